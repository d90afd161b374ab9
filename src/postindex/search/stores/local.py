"""LocalEmbeddingStore — in-process usearch HNSW embedding store."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
from usearch.index import Index

from postindex.exceptions import AuthorizationError
from postindex.search.types import EmbeddingRecord, SearchHit
from postindex.search.vectors import check_dimension, coerce_vector, decode_vector, encode_vector

if TYPE_CHECKING:
    from postindex.auth import AuthContext

_INDEX_FILE = "embeddings.usearch"
_META_FILE = "embeddings_meta.json"


class LocalEmbeddingStore:
    """In-process embedding store backed by a usearch HNSW index.

    Meant for local development and tests.  Writes require an authenticated
    context but no ownership check is made.  :meth:`save` / :meth:`load`
    persist the index plus a JSON sidecar holding each post's canonical
    vector text.

    Thread-safe via :class:`threading.Lock`.
    """

    def __init__(self, *, dimension: int, directory: str | None = None) -> None:
        self._dimension = dimension
        self._directory = directory
        self._index = Index(ndim=dimension, metric="cos", dtype="f32")
        self._lock = threading.Lock()
        self._next_key: int = 0

        # usearch key → record
        self._key_to_record: dict[int, EmbeddingRecord] = {}
        # post_id → usearch key
        self._id_to_key: dict[str, int] = {}

    # ------------------------------------------------------------------
    # EmbeddingStore protocol
    # ------------------------------------------------------------------

    async def upsert(
        self,
        record: EmbeddingRecord,
        *,
        auth: AuthContext | None = None,
    ) -> None:
        """Insert or overwrite the vector for ``record.post_id``."""
        if auth is None or not auth.is_authenticated:
            msg = "Missing authorization context for embedding write"
            raise AuthorizationError(msg)
        vector = coerce_vector(record.vector)
        check_dimension(vector, self._dimension)

        stored = EmbeddingRecord(
            post_id=record.post_id,
            vector=vector,
            model_name=record.model_name,
            computed_at=datetime.now(UTC),
        )
        with self._lock:
            key = self._next_key
            self._next_key += 1
            # New vector goes in before the old one comes out
            self._index.add(key, np.array(vector, dtype=np.float32))
            old_key = self._id_to_key.get(record.post_id)
            if old_key is not None:
                self._index.remove(old_key)
                self._key_to_record.pop(old_key, None)
            self._key_to_record[key] = stored
            self._id_to_key[record.post_id] = key

    async def fetch(self, post_id: str) -> EmbeddingRecord | None:
        """Return the stored record for *post_id*, or ``None``."""
        key = self._id_to_key.get(post_id)
        if key is None:
            return None
        return self._key_to_record.get(key)

    async def search(self, vector: list[float], *, k: int = 10) -> list[SearchHit]:
        """Search for the *k* nearest vectors."""
        if k < 1:
            msg = f"k must be at least 1, got {k}"
            raise ValueError(msg)
        query = coerce_vector(vector)
        check_dimension(query, self._dimension)
        if len(self) == 0:
            return []

        with self._lock:
            matches = self._index.search(np.array(query, dtype=np.float32), min(k, len(self)))

        hits: list[SearchHit] = []
        for match_key, distance in zip(
            matches.keys.tolist(), matches.distances.tolist(), strict=True
        ):
            record = self._key_to_record.get(int(match_key))
            if record is None:
                continue
            hits.append(
                SearchHit(post_id=record.post_id, score=1.0 - distance, vector=record.vector)
            )
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits

    async def connect(self) -> None:
        """Load from *directory* if one was given and holds a saved index."""
        if self._directory is not None and (Path(self._directory) / _META_FILE).exists():
            self.load(self._directory)

    async def close(self) -> None:
        """Save to *directory* if one was given."""
        if self._directory is not None:
            self.save(self._directory)

    @property
    def dimension(self) -> int:
        return self._dimension

    # ------------------------------------------------------------------
    # Local-specific methods
    # ------------------------------------------------------------------

    def has(self, post_id: str) -> bool:
        """Return whether *post_id* is present in the store."""
        return post_id in self._id_to_key

    def __len__(self) -> int:
        """Return the number of stored embeddings."""
        return len(self._key_to_record)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, directory: str) -> None:
        """Persist the index and metadata to *directory*."""
        dir_path = Path(directory)
        dir_path.mkdir(parents=True, exist_ok=True)

        with self._lock:
            self._index.save(str(dir_path / _INDEX_FILE))
            records = {
                str(key): {
                    "post_id": rec.post_id,
                    "embedding": encode_vector(rec.vector),
                    "model_name": rec.model_name,
                    "computed_at": rec.computed_at.isoformat() if rec.computed_at else None,
                }
                for key, rec in self._key_to_record.items()
            }
            sidecar: dict[str, Any] = {
                "dimension": self._dimension,
                "next_key": self._next_key,
                "records": records,
            }

        with (dir_path / _META_FILE).open("w") as f:
            json.dump(sidecar, f)

    def load(self, directory: str) -> None:
        """Load a previously saved index from *directory*."""
        dir_path = Path(directory)
        with (dir_path / _META_FILE).open() as f:
            sidecar = json.load(f)

        if sidecar.get("dimension", self._dimension) != self._dimension:
            msg = (
                f"Saved index has dimension {sidecar['dimension']}, "
                f"store expects {self._dimension}"
            )
            raise ValueError(msg)

        key_to_record: dict[int, EmbeddingRecord] = {}
        for key_str, raw in sidecar.get("records", {}).items():
            computed_at = raw.get("computed_at")
            key_to_record[int(key_str)] = EmbeddingRecord(
                post_id=raw["post_id"],
                vector=decode_vector(raw["embedding"]),
                model_name=raw.get("model_name", ""),
                computed_at=datetime.fromisoformat(computed_at) if computed_at else None,
            )

        with self._lock:
            self._index.load(str(dir_path / _INDEX_FILE))
            self._next_key = sidecar["next_key"]
            self._key_to_record = key_to_record
            self._id_to_key = {rec.post_id: key for key, rec in key_to_record.items()}
