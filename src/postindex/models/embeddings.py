"""PostEmbedding model — one current embedding per post."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Text
from sqlmodel import Field, SQLModel


class PostEmbedding(SQLModel, table=True):
    """Stored embedding for a post.

    ``post_id`` is the primary key, so a post has at most one row and
    re-indexing overwrites it.  ``embedding`` holds the canonical JSON text
    produced by :func:`postindex.search.vectors.encode_vector`.
    """

    __tablename__ = "post_embeddings"

    post_id: str = Field(primary_key=True)
    embedding: str = Field(sa_type=Text)
    model_name: str = Field(default="")
    computed_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
