"""Exception hierarchy for the indexing pipeline.

Each class carries a ``retryable`` flag so callers (the authoring flow, a
job queue, the backfill) can decide whether trying again makes sense.
"""


class PostIndexError(Exception):
    """Base exception for all postindex errors."""

    retryable: bool = False


class ValidationError(PostIndexError):
    """Raised when a caller-supplied request is structurally invalid."""


class EmbeddingError(PostIndexError):
    """Raised when the embedding computation fails (model load, inference, empty text)."""

    retryable = True


class StoreError(PostIndexError):
    """Base class for embedding store failures."""


class StoreUnavailableError(StoreError):
    """Raised on transient persistence failures (connection, timeout, 5xx)."""

    retryable = True


class AuthorizationError(StoreError):
    """Raised when the caller lacks permission to write the record."""


class SchemaError(StoreError):
    """Raised when a payload is malformed (wrong dimension, bad values, unknown table)."""


class IndexingRequestError(PostIndexError):
    """Raised by an indexing client when the indexing endpoint reports failure."""

    retryable = True

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
