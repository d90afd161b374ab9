"""Vector helpers — canonical serialization and L2 normalization.

The canonical on-disk form of an embedding is a JSON array of floats with
no whitespace (``[0.6,0.8]``).  The same text is accepted by pgvector's
``vector`` input parser, so one encoding serves every store.
"""

from __future__ import annotations

import json
import math
import numbers
from typing import TYPE_CHECKING, Any

import numpy as np

from postindex.exceptions import EmbeddingError, SchemaError

if TYPE_CHECKING:
    from collections.abc import Sequence


def encode_vector(vector: Sequence[float]) -> str:
    """Serialize *vector* to its canonical JSON text."""
    values = coerce_vector(vector)
    return json.dumps(values, separators=(",", ":"))


def decode_vector(raw: str | Sequence[float]) -> list[float]:
    """Parse a stored embedding back into an ordered list of floats.

    Accepts the canonical JSON text or an already-decoded sequence (some
    drivers return pgvector columns as lists).
    """
    if isinstance(raw, str):
        try:
            parsed: Any = json.loads(raw)
        except json.JSONDecodeError as exc:
            msg = f"Stored embedding is not valid JSON: {exc}"
            raise SchemaError(msg) from exc
    else:
        parsed = raw
    if not isinstance(parsed, list):
        msg = f"Stored embedding must be a JSON array, got {type(parsed).__name__}"
        raise SchemaError(msg)
    return coerce_vector(parsed)


def coerce_vector(vector: Sequence[Any]) -> list[float]:
    """Return *vector* as a list of finite floats, or raise :class:`SchemaError`."""
    values: list[float] = []
    for i, item in enumerate(vector):
        # bool is an int subclass; a vector of flags is a caller bug
        if isinstance(item, bool) or not isinstance(item, numbers.Real):
            msg = f"Vector element {i} is not a number: {item!r}"
            raise SchemaError(msg)
        value = float(item)
        if not math.isfinite(value):
            msg = f"Vector element {i} is not finite: {value!r}"
            raise SchemaError(msg)
        values.append(value)
    if not values:
        msg = "Vector is empty"
        raise SchemaError(msg)
    return values


def check_dimension(vector: Sequence[float], dimension: int) -> None:
    """Raise :class:`SchemaError` if *vector* does not have *dimension* entries."""
    if len(vector) != dimension:
        msg = f"Expected a {dimension}-dimensional vector, got {len(vector)}"
        raise SchemaError(msg)


def l2_normalize(vector: Sequence[float]) -> list[float]:
    """Scale *vector* to unit Euclidean length."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0 or not math.isfinite(norm):
        msg = "Cannot normalize a zero or non-finite vector"
        raise EmbeddingError(msg)
    return (arr / norm).tolist()


def cosine_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of *query* against each row of *matrix*."""
    q = np.asarray(query, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    denom[denom == 0.0] = 1.0
    return (matrix @ q) / denom
