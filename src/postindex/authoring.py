"""Post authoring flow — durable post creation plus best-effort indexing.

Creating a post has two phases:

1. Durable: the post row, its tags and tag links are written and committed.
2. Best-effort: a ``POST_CREATED`` event is published on the
   :class:`~postindex.events.EventBus`.  The indexing handler registered by
   :func:`register_indexing` runs in a detached task; its failures are
   logged and never reach the caller of :meth:`PostAuthoringService.create_post`.

A post whose indexing never completes stays readable and listable; only
semantic search quality degrades until :mod:`postindex.backfill` catches up.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
from sqlmodel import col, select

from postindex.dialect import get_dialect, upsert_row
from postindex.events import EventType, PostEvent
from postindex.exceptions import AuthorizationError, IndexingRequestError, ValidationError
from postindex.models import Post, PostTag, Tag

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from postindex.auth import AuthContext
    from postindex.events import EventBus
    from postindex.indexing import IndexingHandler

logger = logging.getLogger(__name__)

DEFAULT_INDEX_PATH = "/api/embed-post"


# ------------------------------------------------------------------
# Indexing clients
# ------------------------------------------------------------------


@runtime_checkable
class IndexingClient(Protocol):
    """Sends one indexing request for a post."""

    async def index(self, post_id: int | str, content: str, *, auth: AuthContext | None = None) -> None:
        """Request indexing; raise on failure."""
        ...


class HttpIndexingClient:
    """Calls the indexing endpoint over HTTP.

    The caller's bearer token is forwarded so the endpoint's store can
    authorize the write.  Raises :class:`IndexingRequestError` on a non-2xx
    status, a non-JSON body, or a transport failure.
    """

    def __init__(
        self,
        base_url: str,
        *,
        path: str = DEFAULT_INDEX_PATH,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._path = path
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def index(self, post_id: int | str, content: str, *, auth: AuthContext | None = None) -> None:
        headers: dict[str, str] = {}
        if auth is not None and auth.access_token:
            headers["Authorization"] = f"Bearer {auth.access_token}"
        try:
            response = await self._client.post(
                self._path,
                json={"postId": post_id, "content": content},
                headers=headers,
            )
        except httpx.TransportError as exc:
            msg = f"Indexing endpoint unreachable: {exc}"
            raise IndexingRequestError(msg) from exc

        try:
            data: Any = response.json()
        except ValueError as exc:
            msg = f"Invalid JSON response: {response.text[:200]}"
            raise IndexingRequestError(msg, status_code=response.status_code) from exc

        if not response.is_success:
            error = data.get("error") if isinstance(data, dict) else None
            raise IndexingRequestError(error or "Embedding failed", status_code=response.status_code)
        logger.debug("Indexing request for post %s succeeded", post_id)

    async def close(self) -> None:
        await self._client.aclose()


class InProcessIndexingClient:
    """Calls an :class:`~postindex.indexing.IndexingHandler` directly."""

    def __init__(self, handler: IndexingHandler) -> None:
        self._handler = handler

    async def index(self, post_id: int | str, content: str, *, auth: AuthContext | None = None) -> None:
        response = await self._handler.handle({"postId": post_id, "content": content}, auth=auth)
        if not response.ok:
            raise IndexingRequestError(
                response.body.get("error", "Embedding failed"),
                status_code=response.status_code,
            )


def register_indexing(bus: EventBus, client: IndexingClient) -> None:
    """Index every newly created post through *client*."""

    async def _index_created_post(event: PostEvent) -> None:
        if not event.content:
            logger.info("Post %s has no content; skipping indexing", event.post_id)
            return
        await client.index(event.post_id, event.content, auth=event.auth)

    bus.register(EventType.POST_CREATED, _index_created_post)


# ------------------------------------------------------------------
# Authoring service
# ------------------------------------------------------------------


def _clean_tags(tags: Iterable[str]) -> list[str]:
    """Trim names, drop blanks and duplicates, keep first-seen order."""
    seen: dict[str, None] = {}
    for tag in tags:
        name = tag.strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)


class PostAuthoringService:
    """Creates and reads posts; hands indexing off to the event bus."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
    ) -> None:
        self._session_factory = session_factory
        self._event_bus = event_bus

    async def create_post(
        self,
        auth: AuthContext | None,
        title: str,
        content: str,
        *,
        media_urls: Sequence[str] = (),
        tags: Iterable[str] = (),
    ) -> Post:
        """Create a post for the authenticated user and schedule its indexing.

        Returns once the post is committed; indexing runs afterwards.

        Raises:
            AuthorizationError: No signed-in user in *auth*.
            ValidationError: *title* is blank.
        """
        if auth is None or not auth.user_id:
            msg = "User not logged in"
            raise AuthorizationError(msg)
        if not title or not title.strip():
            msg = "Title is required"
            raise ValidationError(msg)

        post = Post(
            user_id=auth.user_id,
            title=title.strip(),
            content=content,
            media_urls=list(media_urls),
        )
        tag_names = _clean_tags(tags)
        async with self._session_factory() as session, session.begin():
            session.add(post)
            await session.flush()
            assert post.id is not None
            await self._link_tags(session, post.id, tag_names)

        logger.info("Created post %s with %d tags", post.id, len(tag_names))
        self._event_bus.publish(
            PostEvent(
                event_type=EventType.POST_CREATED,
                post_id=post.id,
                content=content,
                auth=auth,
            )
        )
        return post

    async def add_tags(self, auth: AuthContext | None, post_id: int, tags: Iterable[str]) -> list[str]:
        """Attach *tags* to a post owned by the caller; return the post's tag names."""
        if auth is None or not auth.user_id:
            msg = "User not logged in"
            raise AuthorizationError(msg)
        async with self._session_factory() as session, session.begin():
            post = await session.get(Post, post_id)
            if post is None or post.user_id != auth.user_id:
                msg = f"User {auth.user_id} may not tag post {post_id}"
                raise AuthorizationError(msg)
            await self._link_tags(session, post_id, _clean_tags(tags))
        return await self.get_tags(post_id)

    async def get_post(self, post_id: int) -> Post | None:
        async with self._session_factory() as session:
            return await session.get(Post, post_id)

    async def get_tags(self, post_id: int) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Tag.name)
                .join(PostTag, col(PostTag.tag_id) == col(Tag.id))
                .where(PostTag.post_id == post_id)
                .order_by(col(Tag.name))
            )
            return list(result.scalars().all())

    async def list_posts(self, *, tag: str | None = None, limit: int = 50) -> list[Post]:
        """Newest posts first, optionally only those carrying *tag*."""
        stmt = select(Post)
        if tag is not None:
            stmt = (
                stmt.join(PostTag, col(PostTag.post_id) == col(Post.id))
                .join(Tag, col(Tag.id) == col(PostTag.tag_id))
                .where(Tag.name == tag.strip())
            )
        stmt = stmt.order_by(col(Post.created_at).desc(), col(Post.id).desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @staticmethod
    async def _link_tags(session: AsyncSession, post_id: int, names: list[str]) -> None:
        if not names:
            return
        bind = session.get_bind()
        dialect = get_dialect(bind)
        for name in names:
            await upsert_row(session, dialect, Tag, {"name": name}, conflict_keys=["name"])
            result = await session.execute(select(Tag.id).where(Tag.name == name))
            tag_id = result.scalar_one()
            await upsert_row(
                session,
                dialect,
                PostTag,
                {"post_id": post_id, "tag_id": tag_id},
                conflict_keys=["post_id", "tag_id"],
            )
