"""DatabaseEmbeddingStore — SQL-backed embedding store (SQLite / PostgreSQL)."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import numpy as np
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select

from postindex.dialect import get_dialect, upsert_row
from postindex.exceptions import (
    AuthorizationError,
    SchemaError,
    StoreError,
    StoreUnavailableError,
)
from postindex.models import Post, PostEmbedding
from postindex.search.types import EmbeddingRecord, SearchHit
from postindex.search.vectors import (
    check_dimension,
    coerce_vector,
    cosine_scores,
    decode_vector,
    encode_vector,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from postindex.auth import AuthContext, UserResolver

logger = logging.getLogger(__name__)


@contextmanager
def _translate_errors(operation: str, post_id: str | None = None) -> Iterator[None]:
    """Map SQLAlchemy / driver failures onto the store error taxonomy."""
    try:
        yield
    except StoreError:
        raise
    except (sa_exc.IntegrityError, sa_exc.DataError, sa_exc.ProgrammingError) as exc:
        msg = f"{operation} rejected by database for post {post_id}: {exc.orig}"
        raise SchemaError(msg) from exc
    except (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.TimeoutError, OSError) as exc:
        msg = f"{operation} failed, database unavailable: {exc}"
        raise StoreUnavailableError(msg) from exc


class DatabaseEmbeddingStore:
    """Embedding store on the ``post_embeddings`` table.

    Upserts are a single ``INSERT ... ON CONFLICT (post_id) DO UPDATE``
    inside a transaction, so a failed write leaves the prior row intact.
    Concurrent upserts for one post are last-writer-wins.

    Write authorization mirrors the hosted backend's row-level security:
    the caller must own the post (``posts.user_id``) unless the context is
    service-role.  A context carrying only an access token is resolved to
    a user id through *user_resolver*.

    The engine is created once on :meth:`connect` and reused; pass *engine*
    to share an existing one (it is then not disposed on :meth:`close`).

    Usage::

        store = DatabaseEmbeddingStore(url="sqlite+aiosqlite:///posts.db", dimension=384)
        await store.connect()
        await store.upsert(EmbeddingRecord(post_id="42", vector=[...]), auth=ctx)
        await store.close()
    """

    def __init__(
        self,
        *,
        dimension: int,
        url: str | None = None,
        engine: AsyncEngine | None = None,
        user_resolver: UserResolver | None = None,
        enforce_ownership: bool = True,
        create_tables: bool = False,
    ) -> None:
        if url is None and engine is None:
            msg = "DatabaseEmbeddingStore requires url= or engine="
            raise ValueError(msg)
        self._dimension = dimension
        self._url = url
        self._engine = engine
        self._owns_engine = engine is None
        self._user_resolver = user_resolver
        self._enforce_ownership = enforce_ownership
        self._create_tables = create_tables
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._dialect = "sqlite"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the engine and session factory (idempotent)."""
        if self._session_factory is not None:
            return
        if self._engine is None:
            assert self._url is not None
            self._engine = create_async_engine(self._url, echo=False)
        self._dialect = get_dialect(self._engine)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        if self._create_tables:
            with _translate_errors("create tables"):
                async with self._engine.begin() as conn:
                    await conn.run_sync(SQLModel.metadata.create_all)

    async def close(self) -> None:
        """Dispose the engine if this store created it."""
        close_resolver = getattr(self._user_resolver, "close", None)
        if close_resolver is not None:
            await close_resolver()
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            self._engine = None
        self._session_factory = None

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._require_factory()

    # ------------------------------------------------------------------
    # EmbeddingStore protocol
    # ------------------------------------------------------------------

    async def upsert(
        self,
        record: EmbeddingRecord,
        *,
        auth: AuthContext | None = None,
    ) -> None:
        """Insert or overwrite the embedding row for ``record.post_id``."""
        vector = coerce_vector(record.vector)
        check_dimension(vector, self._dimension)
        user_id = await self._resolve_writer(auth)
        factory = self._require_factory()

        values = {
            "post_id": record.post_id,
            "embedding": encode_vector(vector),
            "model_name": record.model_name,
            "computed_at": datetime.now(UTC),
        }
        with _translate_errors("upsert", record.post_id):
            async with factory() as session, session.begin():
                if user_id is not None:
                    await self._check_owner(session, record.post_id, user_id)
                await upsert_row(
                    session,
                    self._dialect,
                    PostEmbedding,
                    values,
                    conflict_keys=["post_id"],
                )
        logger.debug("Upserted embedding for post %s", record.post_id)

    async def fetch(self, post_id: str) -> EmbeddingRecord | None:
        """Return the stored record for *post_id*, or ``None``."""
        factory = self._require_factory()
        with _translate_errors("fetch", post_id):
            async with factory() as session:
                row = await session.get(PostEmbedding, post_id)
        if row is None:
            return None
        return EmbeddingRecord(
            post_id=row.post_id,
            vector=decode_vector(row.embedding),
            model_name=row.model_name,
            computed_at=row.computed_at,
        )

    async def search(self, vector: list[float], *, k: int = 10) -> list[SearchHit]:
        """Brute-force cosine search over every stored vector."""
        if k < 1:
            msg = f"k must be at least 1, got {k}"
            raise ValueError(msg)
        query = coerce_vector(vector)
        check_dimension(query, self._dimension)
        factory = self._require_factory()
        with _translate_errors("search"):
            async with factory() as session:
                result = await session.execute(
                    select(PostEmbedding.post_id, PostEmbedding.embedding)
                )
                rows = result.all()

        ids: list[str] = []
        vectors: list[list[float]] = []
        for post_id, raw in rows:
            try:
                stored = decode_vector(raw)
                check_dimension(stored, self._dimension)
            except SchemaError:
                logger.warning("Skipping unreadable embedding for post %s", post_id)
                continue
            ids.append(post_id)
            vectors.append(stored)
        if not ids:
            return []

        matrix = np.asarray(vectors, dtype=np.float64)
        scores = cosine_scores(query, matrix)
        order = np.argsort(-scores)[:k]
        return [
            SearchHit(post_id=ids[i], score=float(scores[i]), vector=vectors[i])
            for i in order.tolist()
        ]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            msg = "DatabaseEmbeddingStore is not connected; call connect() first"
            raise StoreUnavailableError(msg)
        return self._session_factory

    async def _resolve_writer(self, auth: AuthContext | None) -> str | None:
        """Return the user id whose ownership must be checked, or ``None``.

        ``None`` means no ownership check: service-role writes, or any
        authenticated caller when ownership is not enforced.
        """
        if auth is None or not auth.is_authenticated:
            msg = "Missing authorization context for embedding write"
            raise AuthorizationError(msg)
        if auth.service_role or not self._enforce_ownership:
            return None
        if auth.user_id:
            return auth.user_id
        if self._user_resolver is None:
            msg = "Cannot resolve access token: no user resolver configured"
            raise AuthorizationError(msg)
        assert auth.access_token is not None
        return await self._user_resolver.resolve(auth.access_token)

    @staticmethod
    async def _check_owner(session: AsyncSession, post_id: str, user_id: str) -> None:
        try:
            numeric_id = int(post_id)
        except ValueError:
            numeric_id = None
        owner = None
        if numeric_id is not None:
            result = await session.execute(select(Post.user_id).where(Post.id == numeric_id))
            owner = result.scalar_one_or_none()
        if owner is None or owner != user_id:
            msg = f"User {user_id} may not index post {post_id}"
            raise AuthorizationError(msg)
