"""PostgrestEmbeddingStore — hosted backend (Supabase) REST interface over httpx."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from postindex.exceptions import (
    AuthorizationError,
    SchemaError,
    StoreUnavailableError,
)
from postindex.search.types import EmbeddingRecord, SearchHit
from postindex.search.vectors import (
    check_dimension,
    coerce_vector,
    decode_vector,
    encode_vector,
)

if TYPE_CHECKING:
    from postindex.auth import AuthContext

logger = logging.getLogger(__name__)

_AUTH_STATUSES = frozenset({401, 403})
_SCHEMA_STATUSES = frozenset({400, 404, 406, 409, 422})


class PostgrestEmbeddingStore:
    """Embedding store behind a PostgREST endpoint.

    Authorization is enforced by the backend's row-level-security policies:
    the caller's bearer token is forwarded on every write, and the project
    API key goes in the ``apikey`` header.  A service-role context writes
    with the API key as bearer (use a service-role key for trusted jobs).

    Upserts are a single ``POST`` with ``Prefer: resolution=merge-duplicates``
    and ``on_conflict=post_id``; the backend runs it as one statement, so a
    failed write leaves the prior row intact.

    Nearest-neighbour queries call the ``match_function`` RPC, expected to
    take ``query_embedding`` and ``match_count`` and return rows of
    ``post_id`` and ``similarity``.

    The HTTP client is created once on :meth:`connect` and reused.
    """

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        dimension: int,
        table: str = "post_embeddings",
        match_function: str = "match_post_embeddings",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._dimension = dimension
        self._table = table
        self._match_function = match_function
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the shared HTTP client (idempotent)."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self._url}/rest/v1",
                timeout=self._timeout,
                transport=self._transport,
                headers={"apikey": self._api_key},
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def dimension(self) -> int:
        return self._dimension

    # ------------------------------------------------------------------
    # EmbeddingStore protocol
    # ------------------------------------------------------------------

    async def upsert(
        self,
        record: EmbeddingRecord,
        *,
        auth: AuthContext | None = None,
    ) -> None:
        """Upsert the row for ``record.post_id`` under the caller's credentials."""
        vector = coerce_vector(record.vector)
        check_dimension(vector, self._dimension)
        headers = self._auth_headers(auth)
        headers["Prefer"] = "resolution=merge-duplicates,return=minimal"

        row: dict[str, Any] = {
            "post_id": record.post_id,
            "embedding": encode_vector(vector),
        }
        if record.model_name:
            row["model_name"] = record.model_name

        response = await self._request(
            "POST",
            f"/{self._table}",
            params={"on_conflict": "post_id"},
            json=row,
            headers=headers,
        )
        self._raise_for_status(response, "upsert", record.post_id)
        logger.debug("Upserted embedding for post %s", record.post_id)

    async def fetch(self, post_id: str) -> EmbeddingRecord | None:
        """Return the stored record for *post_id*, or ``None``."""
        response = await self._request(
            "GET",
            f"/{self._table}",
            params={"post_id": f"eq.{post_id}", "select": "post_id,embedding,model_name"},
            headers=self._auth_headers(None, required=False),
        )
        self._raise_for_status(response, "fetch", post_id)
        rows = self._json(response)
        if not rows:
            return None
        row = rows[0]
        return EmbeddingRecord(
            post_id=str(row["post_id"]),
            vector=decode_vector(row["embedding"]),
            model_name=row.get("model_name") or "",
        )

    async def search(self, vector: list[float], *, k: int = 10) -> list[SearchHit]:
        """Nearest-neighbour query via the match RPC."""
        if k < 1:
            msg = f"k must be at least 1, got {k}"
            raise ValueError(msg)
        query = coerce_vector(vector)
        check_dimension(query, self._dimension)
        response = await self._request(
            "POST",
            f"/rpc/{self._match_function}",
            json={"query_embedding": encode_vector(query), "match_count": k},
            headers=self._auth_headers(None, required=False),
        )
        self._raise_for_status(response, "search")
        return [
            SearchHit(post_id=str(row["post_id"]), score=float(row["similarity"]))
            for row in self._json(response)
        ]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _auth_headers(self, auth: AuthContext | None, *, required: bool = True) -> dict[str, str]:
        if auth is not None and auth.service_role:
            return {"Authorization": f"Bearer {self._api_key}"}
        if auth is not None and auth.access_token:
            return {"Authorization": f"Bearer {auth.access_token}"}
        if required:
            msg = "Missing access token for embedding write"
            raise AuthorizationError(msg)
        return {"Authorization": f"Bearer {self._api_key}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        await self.connect()
        assert self._client is not None
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            msg = f"Embedding store unreachable: {exc}"
            raise StoreUnavailableError(msg) from exc

    @staticmethod
    def _raise_for_status(
        response: httpx.Response,
        operation: str,
        post_id: str | None = None,
    ) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = response.text[:500]
        if status in _AUTH_STATUSES:
            msg = f"{operation} not authorized for post {post_id}: {detail}"
            raise AuthorizationError(msg)
        if status in _SCHEMA_STATUSES:
            msg = f"{operation} rejected for post {post_id} (HTTP {status}): {detail}"
            raise SchemaError(msg)
        msg = f"{operation} failed for post {post_id} (HTTP {status}): {detail}"
        raise StoreUnavailableError(msg)

    @staticmethod
    def _json(response: httpx.Response) -> list[dict[str, Any]]:
        try:
            body = response.json()
        except ValueError as exc:
            msg = "Embedding store returned a non-JSON body"
            raise StoreUnavailableError(msg) from exc
        if not isinstance(body, list):
            msg = f"Expected a JSON array from embedding store, got {type(body).__name__}"
            raise SchemaError(msg)
        return body
