"""Tests for IndexingHandler — validation, pipeline order, response envelope."""

from __future__ import annotations

import logging

import pytest

from postindex.auth import AuthContext
from postindex.exceptions import (
    AuthorizationError,
    EmbeddingError,
    StoreUnavailableError,
    ValidationError,
)
from postindex.indexing import (
    FAILURE_MESSAGE,
    MISSING_FIELDS_MESSAGE,
    UNAUTHORIZED_MESSAGE,
    IndexingHandler,
    IndexRequest,
    Stage,
)
from postindex.search.stores.database import DatabaseEmbeddingStore
from postindex.search.types import EmbeddingRecord
from postindex.search.vectors import encode_vector

# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------


class FakeEmbedder:
    """Returns a fixed vector and counts calls."""

    def __init__(self, vector: list[float] | None = None, error: Exception | None = None) -> None:
        self.vector = vector or [0.6, 0.8]
        self.error = error
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]

    @property
    def dimensions(self) -> int:
        return len(self.vector)

    @property
    def model_name(self) -> str:
        return "fake-model"


class FakeStore:
    """Records upserts; optionally fails."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.records: dict[str, EmbeddingRecord] = {}
        self.calls = 0
        self.last_auth: AuthContext | None = None

    async def upsert(self, record: EmbeddingRecord, *, auth: AuthContext | None = None) -> None:
        self.calls += 1
        self.last_auth = auth
        if self.error is not None:
            raise self.error
        self.records[record.post_id] = record

    async def fetch(self, post_id: str) -> EmbeddingRecord | None:
        return self.records.get(post_id)

    async def search(self, vector, *, k=10):
        return []

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @property
    def dimension(self) -> int:
        return 2


_AUTH = AuthContext(user_id="alice")


# ==================================================================
# Request validation
# ==================================================================


class TestIndexRequest:
    def test_string_post_id(self):
        request = IndexRequest.from_payload({"postId": "42", "content": "hello"})
        assert request == IndexRequest(post_id="42", content="hello")

    def test_numeric_post_id_becomes_string(self):
        assert IndexRequest.from_payload({"postId": 42, "content": "x"}).post_id == "42"
        assert IndexRequest.from_payload({"postId": 0, "content": "x"}).post_id == "0"

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            "postId",
            {},
            {"content": "hello"},
            {"postId": "42"},
            {"postId": "", "content": "hello"},
            {"postId": "   ", "content": "hello"},
            {"postId": "42", "content": ""},
            {"postId": "42", "content": "  \n\t"},
            {"postId": True, "content": "hello"},
            {"postId": 4.2, "content": "hello"},
            {"postId": "42", "content": 7},
            {"postId": None, "content": "hello"},
        ],
    )
    def test_rejected(self, payload):
        with pytest.raises(ValidationError, match=MISSING_FIELDS_MESSAGE):
            IndexRequest.from_payload(payload)


# ==================================================================
# Envelope
# ==================================================================


class TestHandle:
    async def test_success(self):
        embedder, store = FakeEmbedder(), FakeStore()
        handler = IndexingHandler(embedder, store)

        response = await handler.handle({"postId": 42, "content": "hello"}, auth=_AUTH)

        assert response.status_code == 200
        assert response.body == {"success": True}
        assert response.ok
        record = store.records["42"]
        assert record.vector == [0.6, 0.8]
        assert record.model_name == "fake-model"
        assert store.last_auth is _AUTH

    async def test_string_post_id_stored_as_canonical_json(self):
        store = FakeStore()
        handler = IndexingHandler(FakeEmbedder([0.6, 0.8]), store)

        response = await handler.handle({"postId": "42", "content": "some text"}, auth=_AUTH)

        assert response.status_code == 200
        assert encode_vector(store.records["42"].vector) == "[0.6,0.8]"

    async def test_missing_fields_never_embeds(self):
        embedder, store = FakeEmbedder(), FakeStore()
        handler = IndexingHandler(embedder, store)

        response = await handler.handle({"postId": "42"})

        assert response.status_code == 400
        assert response.body == {"error": MISSING_FIELDS_MESSAGE}
        assert embedder.calls == []
        assert store.calls == 0

    async def test_embed_failure_skips_store(self):
        embedder = FakeEmbedder(error=EmbeddingError("model exploded"))
        store = FakeStore()
        handler = IndexingHandler(embedder, store)

        response = await handler.handle({"postId": "42", "content": "hello"}, auth=_AUTH)

        assert response.status_code == 500
        assert response.body == {"error": FAILURE_MESSAGE}
        assert store.calls == 0

    async def test_unexpected_embedder_exception_is_500(self):
        handler = IndexingHandler(FakeEmbedder(error=RuntimeError("boom")), FakeStore())
        response = await handler.handle({"postId": "42", "content": "hello"}, auth=_AUTH)
        assert response.status_code == 500

    async def test_store_failure_is_500(self):
        handler = IndexingHandler(FakeEmbedder(), FakeStore(error=StoreUnavailableError("down")))
        response = await handler.handle({"postId": "42", "content": "hello"}, auth=_AUTH)
        assert response.status_code == 500
        assert response.body == {"error": FAILURE_MESSAGE}

    async def test_authorization_failure_is_403(self):
        handler = IndexingHandler(FakeEmbedder(), FakeStore(error=AuthorizationError("RLS")))
        response = await handler.handle({"postId": "42", "content": "hello"}, auth=_AUTH)
        assert response.status_code == 403
        assert response.body == {"error": UNAUTHORIZED_MESSAGE}

    async def test_failure_logged_with_post_and_stage(self, caplog):
        handler = IndexingHandler(FakeEmbedder(), FakeStore(error=StoreUnavailableError("down")))
        with caplog.at_level(logging.ERROR, logger="postindex.indexing"):
            await handler.handle({"postId": "42", "content": "hello"}, auth=_AUTH)
        assert "post 42" in caplog.text
        assert "stage store" in caplog.text
        assert "StoreUnavailableError" in caplog.text

    async def test_body_does_not_leak_internal_detail(self):
        handler = IndexingHandler(
            FakeEmbedder(error=EmbeddingError("CUDA out of memory on device 0")), FakeStore()
        )
        response = await handler.handle({"postId": "42", "content": "hello"}, auth=_AUTH)
        assert "CUDA" not in str(response.body)


# ==================================================================
# index()
# ==================================================================


class TestIndex:
    async def test_stage_tagged_on_embed_error(self):
        handler = IndexingHandler(FakeEmbedder(error=EmbeddingError("x")), FakeStore())
        with pytest.raises(EmbeddingError) as excinfo:
            await handler.index(IndexRequest("1", "hello"), auth=_AUTH)
        assert excinfo.value.stage is Stage.EMBED

    async def test_foreign_error_wrapped(self):
        handler = IndexingHandler(FakeEmbedder(error=RuntimeError("boom")), FakeStore())
        with pytest.raises(EmbeddingError, match="Embedding failed: boom"):
            await handler.index(IndexRequest("1", "hello"), auth=_AUTH)

    async def test_stage_tagged_on_store_error(self):
        handler = IndexingHandler(FakeEmbedder(), FakeStore(error=StoreUnavailableError("down")))
        with pytest.raises(StoreUnavailableError) as excinfo:
            await handler.index(IndexRequest("1", "hello"), auth=_AUTH)
        assert excinfo.value.stage is Stage.STORE


# ==================================================================
# End to end with the SQL store
# ==================================================================


class TestWithDatabaseStore:
    async def test_index_then_reindex(self, async_engine, make_post, alice):
        store = DatabaseEmbeddingStore(dimension=2, engine=async_engine)
        await store.connect()
        post_id = await make_post("alice")

        first = IndexingHandler(FakeEmbedder([0.6, 0.8]), store)
        response = await first.handle({"postId": post_id, "content": "hello"}, auth=alice)
        assert response.status_code == 200
        stored = await store.fetch(str(post_id))
        assert stored is not None
        assert stored.vector == [0.6, 0.8]

        second = IndexingHandler(FakeEmbedder([1.0, 0.0]), store)
        response = await second.handle({"postId": post_id, "content": "edited"}, auth=alice)
        assert response.status_code == 200
        stored = await store.fetch(str(post_id))
        assert stored is not None
        assert stored.vector == [1.0, 0.0]

    async def test_other_user_gets_403_and_row_untouched(self, async_engine, make_post, alice, bob):
        store = DatabaseEmbeddingStore(dimension=2, engine=async_engine)
        await store.connect()
        post_id = await make_post("alice")
        await IndexingHandler(FakeEmbedder([0.6, 0.8]), store).handle(
            {"postId": post_id, "content": "hello"}, auth=alice
        )

        response = await IndexingHandler(FakeEmbedder([1.0, 0.0]), store).handle(
            {"postId": post_id, "content": "hijack"}, auth=bob
        )

        assert response.status_code == 403
        stored = await store.fetch(str(post_id))
        assert stored is not None
        assert stored.vector == [0.6, 0.8]

    async def test_dimension_mismatch_is_500(self, async_engine, make_post, alice):
        store = DatabaseEmbeddingStore(dimension=2, engine=async_engine)
        await store.connect()
        post_id = await make_post("alice")
        handler = IndexingHandler(FakeEmbedder([1.0, 0.0, 0.0]), store)
        response = await handler.handle({"postId": post_id, "content": "hello"}, auth=alice)
        assert response.status_code == 500
        assert await store.fetch(str(post_id)) is None
