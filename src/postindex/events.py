"""EventBus and event types for post-lifecycle side effects."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from postindex.auth import AuthContext

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of post events that trigger side effects."""

    POST_CREATED = "post_created"


@dataclass(frozen=True, slots=True)
class PostEvent:
    """Immutable record of a committed post mutation.

    Attributes:
        event_type: The kind of mutation that occurred.
        post_id: Id of the affected post.
        content: Post content.
        auth: Credentials of the user who made the change, forwarded to
            side effects that write on their behalf.
    """

    event_type: EventType
    post_id: int
    content: str | None = None
    auth: AuthContext | None = None


class EventBus:
    """Dispatches post events to registered handlers.

    :meth:`emit` calls handlers sequentially in registration order and
    waits for them.  :meth:`publish` runs the same dispatch in a detached
    task and returns immediately; :meth:`drain` waits for outstanding
    tasks.  Exceptions are logged but never propagated: a failing handler
    degrades a side effect, it never undoes or blocks the write that
    triggered it.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[Callable[..., Any]]] = {et: [] for et in EventType}
        self._pending: set[asyncio.Task[None]] = set()

    def register(self, event_type: EventType, handler: Callable[..., Any]) -> None:
        """Append *handler* to the list for *event_type*."""
        self._handlers[event_type].append(handler)

    def unregister(self, event_type: EventType, handler: Callable[..., Any]) -> bool:
        """Remove first occurrence of *handler*. Return True if found."""
        handlers = self._handlers[event_type]
        try:
            handlers.remove(handler)
            return True
        except ValueError:
            return False

    async def emit(self, event: PostEvent) -> None:
        """Dispatch *event* to all registered handlers for its type."""
        for handler in list(self._handlers[event.event_type]):
            try:
                await handler(event)
            except Exception:
                logger.warning(
                    "Handler %r failed for %s on post %s",
                    handler,
                    event.event_type.value,
                    event.post_id,
                    exc_info=True,
                )

    def publish(self, event: PostEvent) -> asyncio.Task[None] | None:
        """Dispatch *event* in a detached task; return the task (None if no handlers)."""
        if not self._handlers[event.event_type]:
            return None
        task = asyncio.get_running_loop().create_task(self.emit(event))
        # Hold a reference until done so the task is not garbage-collected
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every task started by :meth:`publish`."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_count(self) -> int:
        """Number of detached dispatch tasks still running."""
        return len(self._pending)

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers across all event types."""
        return sum(len(h) for h in self._handlers.values())

    def clear(self) -> None:
        """Remove all registered handlers."""
        for handlers in self._handlers.values():
            handlers.clear()
