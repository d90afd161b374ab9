"""Build the provider, store and handler described by :class:`Settings`."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from postindex.auth import SupabaseUserResolver
from postindex.indexing import IndexingHandler
from postindex.search.stores import (
    DatabaseEmbeddingStore,
    LocalEmbeddingStore,
    PostgrestEmbeddingStore,
)

if TYPE_CHECKING:
    from postindex.config import EmbeddingSettings, Settings, StoreSettings
    from postindex.search.protocols import EmbeddingProvider, EmbeddingStore

logger = logging.getLogger(__name__)


def build_embedding_provider(settings: EmbeddingSettings) -> EmbeddingProvider:
    """Instantiate the configured embedding provider (model not yet loaded)."""
    if settings.provider == "openai":
        from postindex.search.providers.openai import OpenAIEmbedding

        return OpenAIEmbedding(
            model=settings.model_name,
            dimensions=settings.dimensions,
            api_key=settings.openai_api_key,
        )

    from postindex.search.providers.sentence_transformers import SentenceTransformerEmbedding

    return SentenceTransformerEmbedding(
        settings.model_name,
        max_tokens=settings.max_tokens,
        device=settings.device,
    )


def build_store(settings: StoreSettings, dimension: int) -> EmbeddingStore:
    """Instantiate the configured embedding store (not yet connected)."""
    if settings.backend == "postgrest":
        url, api_key = _require_hosted(settings)
        return PostgrestEmbeddingStore(
            url=url,
            api_key=api_key,
            dimension=dimension,
            table=settings.table,
            match_function=settings.match_function,
            timeout=settings.timeout,
        )
    if settings.backend == "local":
        return LocalEmbeddingStore(dimension=dimension, directory=settings.local_dir)

    resolver = None
    if settings.url and settings.api_key:
        resolver = SupabaseUserResolver(
            url=settings.url, api_key=settings.api_key, timeout=settings.timeout
        )
    return DatabaseEmbeddingStore(
        dimension=dimension,
        url=settings.database_url,
        user_resolver=resolver,
        enforce_ownership=settings.enforce_ownership,
        create_tables=settings.create_tables,
    )


def build_handler(settings: Settings) -> IndexingHandler:
    """Provider + store + handler for *settings*."""
    embedder = build_embedding_provider(settings.embedding)
    store = build_store(settings.store, settings.embedding.dimensions)
    logger.info(
        "Indexing with %s (%d dims) into %s store",
        embedder.model_name,
        settings.embedding.dimensions,
        settings.store.backend,
    )
    return IndexingHandler(embedder, store)


async def start(handler: IndexingHandler, settings: Settings) -> None:
    """Connect the store and, if configured, load the model before serving.

    If the model fails to load, the store is closed again before the
    error propagates.
    """
    await handler.store.connect()
    warm_up = getattr(handler.embedder, "warm_up", None)
    if settings.embedding.eager_load and warm_up is not None:
        # Cold start: pay the model load before the first request
        try:
            await asyncio.to_thread(warm_up)
        except Exception:
            logger.error("Embedding model %s failed to load", handler.embedder.model_name)
            await handler.store.close()
            raise
        logger.info("Embedding model %s loaded", handler.embedder.model_name)


async def stop(handler: IndexingHandler) -> None:
    """Release the store and any provider client."""
    await handler.store.close()
    close = getattr(handler.embedder, "close", None)
    if close is not None:
        await close()


def _require_hosted(settings: StoreSettings) -> tuple[str, str]:
    if not settings.url or not settings.api_key:
        msg = "The postgrest store needs POSTINDEX_STORE__URL and POSTINDEX_STORE__API_KEY"
        raise ValueError(msg)
    return settings.url, settings.api_key
