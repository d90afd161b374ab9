"""SQLModel database models for postindex."""

from postindex.models.embeddings import PostEmbedding
from postindex.models.posts import Post, PostTag, Tag

__all__ = [
    "Post",
    "PostEmbedding",
    "PostTag",
    "Tag",
]
