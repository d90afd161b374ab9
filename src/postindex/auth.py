"""Caller authorization context and hosted-auth user resolution."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

from postindex.exceptions import AuthorizationError, StoreUnavailableError

logger = logging.getLogger(__name__)

_BEARER = "bearer"


@dataclass(frozen=True, slots=True)
class AuthContext:
    """Who is asking for a write.

    Attributes:
        user_id: Resolved user id, if known.
        access_token: Bearer token forwarded from the caller's session.
        service_role: Trusted job credentials; bypasses ownership checks.
    """

    user_id: str | None = None
    access_token: str | None = None
    service_role: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.service_role or bool(self.user_id) or bool(self.access_token)

    @classmethod
    def service(cls) -> AuthContext:
        """Context for trusted background jobs (backfill)."""
        return cls(service_role=True)

    @classmethod
    def from_authorization_header(cls, header: str | None) -> AuthContext | None:
        """Build a context from an ``Authorization: Bearer <token>`` header.

        Returns ``None`` when the header is absent or not a bearer token.
        """
        if not header:
            return None
        scheme, _, token = header.strip().partition(" ")
        token = token.strip()
        if scheme.lower() != _BEARER or not token:
            return None
        return cls(access_token=token)


@runtime_checkable
class UserResolver(Protocol):
    """Resolves an access token to the id of the user it was issued to."""

    async def resolve(self, access_token: str) -> str:
        """Return the user id for *access_token*."""
        ...


class SupabaseUserResolver:
    """Resolves tokens against a hosted auth service (``GET /auth/v1/user``).

    The HTTP client is created on :meth:`connect` and reused for the
    lifetime of the process.
    """

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"apikey": self._api_key},
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def resolve(self, access_token: str) -> str:
        """Return the user id for *access_token*.

        Raises:
            AuthorizationError: The token is rejected or carries no user.
            StoreUnavailableError: The auth service could not be reached.
        """
        await self.connect()
        assert self._client is not None
        try:
            response = await self._client.get(
                "/auth/v1/user",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TransportError as exc:
            msg = f"Auth service unreachable: {exc}"
            raise StoreUnavailableError(msg) from exc

        if response.status_code in (401, 403):
            msg = "Access token rejected by auth service"
            raise AuthorizationError(msg)
        if response.status_code >= 400:
            msg = f"Auth service returned HTTP {response.status_code}"
            raise StoreUnavailableError(msg)

        try:
            body = response.json()
        except ValueError as exc:
            msg = "Auth service returned a non-JSON body"
            raise StoreUnavailableError(msg) from exc

        user_id = body.get("id") if isinstance(body, dict) else None
        if not user_id:
            msg = "Auth service returned no user for token"
            raise AuthorizationError(msg)
        logger.debug("Resolved access token to user %s", user_id)
        return str(user_id)
