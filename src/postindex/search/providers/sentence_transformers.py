"""SentenceTransformerEmbedding — local embedding provider (all-MiniLM-L6-v2)."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

from postindex.exceptions import EmbeddingError
from postindex.search.vectors import l2_normalize

try:
    from sentence_transformers import SentenceTransformer

    _HAS_SENTENCE_TRANSFORMERS = True
except ImportError:  # pragma: no cover
    _HAS_SENTENCE_TRANSFORMERS = False

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "all-MiniLM-L6-v2"


class SentenceTransformerEmbedding:
    """Embedding provider backed by ``sentence-transformers``.

    Vectors are mean-pooled over token representations and L2-normalized,
    so cosine similarity between two outputs equals their dot product.

    Truncation: inputs longer than :attr:`max_tokens` tokens (special tokens
    included) keep their first :attr:`max_tokens` tokens and drop the rest.
    Every truncation is logged at INFO with the original and kept counts.

    The model is loaded on the first call to :meth:`embed` /
    :meth:`embed_batch`, or eagerly with :meth:`warm_up`.  Loading happens
    at most once per instance; the loaded model is only read afterwards and
    can serve concurrent requests.  Loading ``all-MiniLM-L6-v2`` from a cold
    cache takes seconds, so servers should call :meth:`warm_up` at startup.
    Async methods run inference in a thread pool via
    :func:`asyncio.to_thread`.
    """

    truncation = "head"

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        *,
        max_tokens: int | None = None,
        device: str | None = None,
    ) -> None:
        if not _HAS_SENTENCE_TRANSFORMERS:
            msg = (
                "sentence-transformers is required for SentenceTransformerEmbedding. "
                "Install it with: pip install postindex"
            )
            raise ImportError(msg)
        self._model_name = model_name
        self._max_tokens = max_tokens
        self._device = device
        self._model: SentenceTransformer | None = None
        self._lock = threading.Lock()

    def _load_model(self) -> SentenceTransformer:
        if self._model is not None:
            return self._model
        with self._lock:
            if self._model is None:
                logger.info("Loading embedding model %s", self._model_name)
                try:
                    model = SentenceTransformer(self._model_name, device=self._device)
                except Exception as exc:
                    msg = f"Failed to load embedding model {self._model_name!r}: {exc}"
                    raise EmbeddingError(msg) from exc
                self._check_pooling(model)
                if self._max_tokens is not None:
                    model.max_seq_length = min(self._max_tokens, model.max_seq_length)
                self._model = model
        return self._model

    def _check_pooling(self, model: Any) -> None:
        pooling = [m for m in model if hasattr(m, "pooling_mode_mean_tokens")]
        if not pooling or not pooling[-1].pooling_mode_mean_tokens:
            msg = f"Model {self._model_name!r} does not use mean pooling"
            raise EmbeddingError(msg)

    def warm_up(self) -> None:
        """Load the model now instead of on the first request."""
        self._load_model()

    # ------------------------------------------------------------------
    # Sync methods
    # ------------------------------------------------------------------

    def embed_sync(self, text: str) -> list[float]:
        """Embed a single text string (synchronous)."""
        return self.embed_batch_sync([text])[0]

    def embed_batch_sync(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts (synchronous)."""
        for text in texts:
            if not text or not text.strip():
                msg = "Cannot embed empty text"
                raise EmbeddingError(msg)
        model = self._load_model()
        for text in texts:
            self._log_truncation(model, text)
        try:
            result: Any = model.encode(
                texts,
                convert_to_numpy=True,
                normalize_embeddings=True,
                show_progress_bar=False,
            )
        except Exception as exc:
            msg = f"Embedding inference failed: {exc}"
            raise EmbeddingError(msg) from exc
        return [l2_normalize(row) for row in result]

    def _log_truncation(self, model: Any, text: str) -> None:
        limit = model.max_seq_length
        token_count = len(model.tokenizer(text, add_special_tokens=True)["input_ids"])
        if token_count > limit:
            logger.info(
                "Truncating input from %d to %d tokens for %s",
                token_count,
                limit,
                self._model_name,
            )

    # ------------------------------------------------------------------
    # Async methods (EmbeddingProvider protocol)
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string in a thread pool."""
        return await asyncio.to_thread(self.embed_sync, text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts in a thread pool."""
        if not texts:
            return []
        return await asyncio.to_thread(self.embed_batch_sync, texts)

    @property
    def dimensions(self) -> int:
        """Return the embedding dimensionality."""
        model = self._load_model()
        dim = model.get_sentence_embedding_dimension()
        if dim is None:
            msg = f"Model {self._model_name!r} did not report embedding dimensions"
            raise EmbeddingError(msg)
        return dim

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._model_name

    @property
    def max_tokens(self) -> int:
        """Token window; longer inputs are truncated."""
        return self._load_model().max_seq_length
