"""Embedding providers — protocol and implementations."""

from postindex.search.protocols import EmbeddingProvider
from postindex.search.providers.openai import OpenAIEmbedding
from postindex.search.providers.sentence_transformers import (
    DEFAULT_MODEL,
    SentenceTransformerEmbedding,
)

__all__ = [
    "DEFAULT_MODEL",
    "EmbeddingProvider",
    "OpenAIEmbedding",
    "SentenceTransformerEmbedding",
]
