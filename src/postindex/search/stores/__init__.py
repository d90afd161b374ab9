"""Embedding stores — EmbeddingStore protocol implementations."""

from postindex.search.stores.database import DatabaseEmbeddingStore
from postindex.search.stores.local import LocalEmbeddingStore
from postindex.search.stores.postgrest import PostgrestEmbeddingStore

__all__ = [
    "DatabaseEmbeddingStore",
    "LocalEmbeddingStore",
    "PostgrestEmbeddingStore",
]
