"""Post, Tag and PostTag models — the records the authoring flow owns.

Posts are written once; afterwards only their tag links change.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, Text
from sqlmodel import Field, SQLModel


class Post(SQLModel, table=True):
    """A published blog post."""

    __tablename__ = "posts"

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    title: str
    content: str = Field(default="", sa_type=Text)
    media_urls: list[str] = Field(default_factory=list, sa_type=JSON)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class Tag(SQLModel, table=True):
    """A tag name, shared across posts."""

    __tablename__ = "tags"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)


class PostTag(SQLModel, table=True):
    """Link between a post and one of its tags."""

    __tablename__ = "post_tags"

    post_id: int = Field(foreign_key="posts.id", primary_key=True)
    tag_id: int = Field(foreign_key="tags.id", primary_key=True)
