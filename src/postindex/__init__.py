"""postindex: post embedding and semantic-search indexing.

Embeds blog post content, upserts one vector per post into an embedding
store, and exposes the pipeline through an HTTP endpoint and a post
authoring flow that indexes on a best-effort side channel.
"""

__version__ = "0.1.0"

from postindex.auth import AuthContext, SupabaseUserResolver, UserResolver
from postindex.authoring import (
    HttpIndexingClient,
    InProcessIndexingClient,
    IndexingClient,
    PostAuthoringService,
    register_indexing,
)
from postindex.backfill import BackfillReport, backfill_embeddings
from postindex.config import Settings
from postindex.events import EventBus, EventType, PostEvent
from postindex.exceptions import (
    AuthorizationError,
    EmbeddingError,
    IndexingRequestError,
    PostIndexError,
    SchemaError,
    StoreError,
    StoreUnavailableError,
    ValidationError,
)
from postindex.indexing import IndexingHandler, IndexRequest, IndexResponse
from postindex.search.protocols import EmbeddingProvider, EmbeddingStore
from postindex.search.stores import (
    DatabaseEmbeddingStore,
    LocalEmbeddingStore,
    PostgrestEmbeddingStore,
)
from postindex.search.types import EmbeddingRecord, SearchHit

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "BackfillReport",
    "DatabaseEmbeddingStore",
    "EmbeddingError",
    "EmbeddingProvider",
    "EmbeddingRecord",
    "EmbeddingStore",
    "EventBus",
    "EventType",
    "HttpIndexingClient",
    "InProcessIndexingClient",
    "IndexRequest",
    "IndexResponse",
    "IndexingClient",
    "IndexingHandler",
    "IndexingRequestError",
    "LocalEmbeddingStore",
    "PostAuthoringService",
    "PostEvent",
    "PostIndexError",
    "PostgrestEmbeddingStore",
    "SchemaError",
    "SearchHit",
    "Settings",
    "StoreError",
    "StoreUnavailableError",
    "SupabaseUserResolver",
    "UserResolver",
    "ValidationError",
    "__version__",
    "backfill_embeddings",
    "register_indexing",
]
