"""IndexingHandler — validate, embed, upsert, report.

This is the boundary between callers (the HTTP endpoint, the authoring
flow's in-process client) and the embedder + store pipeline.  It is the
single place where internal failures become a response envelope: callers
see a status code and a stable message, while the failure's type, stage,
post id and traceback go to the log.

The handler does not retry.  Retrying is left to the caller or to an
external job (see :mod:`postindex.backfill`).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from postindex.exceptions import (
    AuthorizationError,
    EmbeddingError,
    PostIndexError,
    ValidationError,
)
from postindex.search.types import EmbeddingRecord

if TYPE_CHECKING:
    from postindex.auth import AuthContext
    from postindex.search.protocols import EmbeddingProvider, EmbeddingStore

logger = logging.getLogger(__name__)

MISSING_FIELDS_MESSAGE = "Missing postId or content"
FAILURE_MESSAGE = "Failed to embed post"
UNAUTHORIZED_MESSAGE = "Not authorized to index this post"


class Stage(str, Enum):
    """Pipeline stage a failure happened in."""

    EMBED = "embed"
    STORE = "store"


@dataclass(frozen=True, slots=True)
class IndexRequest:
    """A validated indexing request.

    Attributes:
        post_id: String form of the post id.
        content: Raw text to embed.
    """

    post_id: str
    content: str

    @classmethod
    def from_payload(cls, payload: Any) -> IndexRequest:
        """Validate a decoded JSON body of shape ``{postId, content}``.

        Raises:
            ValidationError: The body is not an object, or ``postId`` /
                ``content`` is missing, empty, or of the wrong type.
        """
        if not isinstance(payload, Mapping):
            raise ValidationError(MISSING_FIELDS_MESSAGE)
        post_id = payload.get("postId")
        content = payload.get("content")

        # bool is an int subclass and never a post id
        if isinstance(post_id, bool) or not isinstance(post_id, (str, int)):
            raise ValidationError(MISSING_FIELDS_MESSAGE)
        post_id = str(post_id)
        if not post_id.strip():
            raise ValidationError(MISSING_FIELDS_MESSAGE)
        if not isinstance(content, str) or not content.strip():
            raise ValidationError(MISSING_FIELDS_MESSAGE)
        return cls(post_id=post_id, content=content)


@dataclass(frozen=True, slots=True)
class IndexResponse:
    """Response envelope: an HTTP-style status code and a JSON body."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class IndexingHandler:
    """Runs one indexing request to completion: validate → embed → upsert.

    *embedder* and *store* are process-wide and injected; the handler holds
    no per-request state and is safe to share across concurrent requests.
    Concurrent requests for the same post are last-writer-wins.
    """

    def __init__(self, embedder: EmbeddingProvider, store: EmbeddingStore) -> None:
        self._embedder = embedder
        self._store = store

    @property
    def embedder(self) -> EmbeddingProvider:
        return self._embedder

    @property
    def store(self) -> EmbeddingStore:
        return self._store

    async def index(self, request: IndexRequest, *, auth: AuthContext | None = None) -> EmbeddingRecord:
        """Embed *request.content* and upsert it under *request.post_id*.

        Raises the typed pipeline errors; see :meth:`handle` for the
        envelope-producing variant.
        """
        try:
            vector = await self._embedder.embed(request.content)
        except PostIndexError as exc:
            _tag_stage(exc, Stage.EMBED)
            raise
        except Exception as exc:
            msg = f"Embedding failed: {exc}"
            raise _tag_stage(EmbeddingError(msg), Stage.EMBED) from exc

        record = EmbeddingRecord(
            post_id=request.post_id,
            vector=vector,
            model_name=self._embedder.model_name,
        )
        try:
            await self._store.upsert(record, auth=auth)
        except Exception as exc:
            _tag_stage(exc, Stage.STORE)
            raise
        return record

    async def handle(self, payload: Any, *, auth: AuthContext | None = None) -> IndexResponse:
        """Process a decoded request body and return the response envelope."""
        try:
            request = IndexRequest.from_payload(payload)
        except ValidationError as exc:
            logger.info("Rejected indexing request: %s", exc)
            return IndexResponse(400, {"error": MISSING_FIELDS_MESSAGE})

        try:
            await self.index(request, auth=auth)
        except AuthorizationError as exc:
            logger.warning(
                "Indexing denied for post %s at stage %s: %s",
                request.post_id,
                _stage_of(exc),
                exc,
            )
            return IndexResponse(403, {"error": UNAUTHORIZED_MESSAGE})
        except Exception as exc:
            logger.error(
                "Indexing failed for post %s at stage %s (%s)",
                request.post_id,
                _stage_of(exc),
                type(exc).__name__,
                exc_info=True,
            )
            return IndexResponse(500, {"error": FAILURE_MESSAGE})

        logger.info("Indexed post %s", request.post_id)
        return IndexResponse(200, {"success": True})


def _tag_stage(exc: Exception, stage: Stage) -> Exception:
    exc.stage = stage  # type: ignore[attr-defined]
    return exc


def _stage_of(exc: BaseException) -> str:
    stage = getattr(exc, "stage", None)
    return stage.value if isinstance(stage, Stage) else "unknown"
