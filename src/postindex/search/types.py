"""Search layer data types — value objects for embedding records and query hits."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True)
class EmbeddingRecord:
    """One post's current embedding.

    Attributes:
        post_id: Key of the post the vector belongs to (unique per store).
        vector: Embedding vector, fixed length for a given model.
        model_name: Name of the model that produced the vector.
        computed_at: When the record was written; set by the store on upsert.
    """

    post_id: str
    vector: list[float]
    model_name: str = ""
    computed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class SearchHit:
    """A single nearest-neighbour match from an embedding store.

    Attributes:
        post_id: Key of the matched post.
        score: Cosine similarity (higher is more similar).
        vector: The stored vector, when the store returns it.
    """

    post_id: str
    score: float
    vector: list[float] | None = field(default=None, compare=False)
