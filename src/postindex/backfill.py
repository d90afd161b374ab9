"""Backfill — index posts whose best-effort indexing never completed.

The request handler never retries, so a post created while the embedder or
store was down has no embedding.  This job finds such posts and indexes
them in batches with service-role credentials.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import String, cast
from sqlmodel import col, select

from postindex.auth import AuthContext
from postindex.models import Post, PostEmbedding
from postindex.search.types import EmbeddingRecord

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from postindex.search.protocols import EmbeddingProvider, EmbeddingStore

logger = logging.getLogger(__name__)


@dataclass
class BackfillReport:
    """Outcome of a backfill run."""

    indexed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.indexed) + len(self.failed) + len(self.skipped)


async def find_unindexed_posts(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    limit: int | None = None,
) -> list[tuple[str, str]]:
    """Return ``(post_id, content)`` for posts with no ``post_embeddings`` row, oldest first."""
    # post_embeddings.post_id is text; posts.id is an integer
    indexed_ids = select(PostEmbedding.post_id)
    stmt = (
        select(Post.id, Post.content)
        .where(cast(col(Post.id), String).not_in(indexed_ids))
        .order_by(col(Post.id))
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    async with session_factory() as session:
        result = await session.execute(stmt)
        return [(str(post_id), content) for post_id, content in result.all()]


async def backfill_embeddings(
    session_factory: async_sessionmaker[AsyncSession],
    embedder: EmbeddingProvider,
    store: EmbeddingStore,
    *,
    batch_size: int = 32,
    limit: int | None = None,
) -> BackfillReport:
    """Embed and upsert every unindexed post.

    Failures are logged and recorded per post; the run continues.  A batch
    whose embedding call fails is retried one post at a time so a single
    bad input does not sink its neighbours.
    """
    report = BackfillReport()
    pending = await find_unindexed_posts(session_factory, limit=limit)
    logger.info("Backfill found %d unindexed posts", len(pending))
    auth = AuthContext.service()

    for start in range(0, len(pending), batch_size):
        batch = pending[start : start + batch_size]
        for post_id, content in batch:
            if not content.strip():
                report.skipped.append(post_id)
        batch = [(pid, content) for pid, content in batch if content.strip()]
        if not batch:
            continue

        try:
            vectors = await embedder.embed_batch([content for _, content in batch])
        except Exception:
            logger.warning("Batch embedding failed; retrying %d posts singly", len(batch), exc_info=True)
            vectors = None

        for i, (post_id, content) in enumerate(batch):
            try:
                vector = vectors[i] if vectors is not None else await embedder.embed(content)
                await store.upsert(
                    EmbeddingRecord(post_id=post_id, vector=vector, model_name=embedder.model_name),
                    auth=auth,
                )
            except Exception:
                logger.warning("Backfill failed for post %s", post_id, exc_info=True)
                report.failed.append(post_id)
                continue
            report.indexed.append(post_id)

    logger.info(
        "Backfill done: %d indexed, %d failed, %d skipped",
        len(report.indexed),
        len(report.failed),
        len(report.skipped),
    )
    return report
