"""Search layer — embedding providers, embedding stores, vector helpers."""

from postindex.search.protocols import EmbeddingProvider, EmbeddingStore
from postindex.search.types import EmbeddingRecord, SearchHit
from postindex.search.vectors import decode_vector, encode_vector, l2_normalize

__all__ = [
    "EmbeddingProvider",
    "EmbeddingRecord",
    "EmbeddingStore",
    "SearchHit",
    "decode_vector",
    "encode_vector",
    "l2_normalize",
]
