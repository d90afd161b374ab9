"""Search layer protocols — async-first interfaces for embedding and vector storage."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from postindex.auth import AuthContext
    from postindex.search.types import EmbeddingRecord, SearchHit


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Async-first protocol for text-to-vector embedding.

    Implementations convert text into fixed-dimension, unit-norm float
    vectors suitable for cosine similarity search.
    """

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string into a vector."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts into vectors."""
        ...

    @property
    def dimensions(self) -> int:
        """Number of dimensions in the embedding vectors."""
        ...

    @property
    def model_name(self) -> str:
        """Name of the embedding model."""
        ...


@runtime_checkable
class EmbeddingStore(Protocol):
    """Async-first protocol for the per-post embedding store.

    ``upsert`` is insert-or-overwrite keyed by ``post_id``: a successful call
    replaces any prior record, a failed call leaves it untouched.
    """

    async def upsert(
        self,
        record: EmbeddingRecord,
        *,
        auth: AuthContext | None = None,
    ) -> None:
        """Insert or overwrite the record for ``record.post_id``."""
        ...

    async def fetch(self, post_id: str) -> EmbeddingRecord | None:
        """Return the current record for *post_id*, or ``None``."""
        ...

    async def search(self, vector: list[float], *, k: int = 10) -> list[SearchHit]:
        """Return the *k* nearest stored vectors by cosine similarity."""
        ...

    async def connect(self) -> None:
        """Open connection / initialize resources."""
        ...

    async def close(self) -> None:
        """Release connection / clean up resources."""
        ...

    @property
    def dimension(self) -> int:
        """Vector dimensionality the store accepts."""
        ...
