"""FastAPI application — the HTTP boundary of the indexing pipeline."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from postindex import __version__
from postindex.auth import AuthContext
from postindex.config import Settings
from postindex.indexing import IndexingHandler
from postindex.wiring import build_handler, start, stop

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["indexing"])


def get_handler(request: Request) -> IndexingHandler:
    """Dependency returning the process-wide handler."""
    return request.app.state.handler


def get_auth(request: Request) -> AuthContext | None:
    """Dependency reading the caller's bearer token."""
    return AuthContext.from_authorization_header(request.headers.get("authorization"))


@router.post("/api/embed-post")
async def embed_post(
    request: Request,
    handler: Annotated[IndexingHandler, Depends(get_handler)],
    auth: Annotated[AuthContext | None, Depends(get_auth)],
) -> JSONResponse:
    """Embed a post's content and upsert it into the embedding store.

    Body: ``{"postId": string | number, "content": string}``.
    Returns ``{"success": true}`` or ``{"error": ...}`` with 400, 403 or 500.
    """
    try:
        payload: Any = await request.json()
    except ValueError:
        payload = None
    response = await handler.handle(payload, auth=auth)
    return JSONResponse(response.body, status_code=response.status_code)


@router.get("/health")
async def health(request: Request) -> dict[str, str]:
    """Liveness plus the model and store in use."""
    handler: IndexingHandler = request.app.state.handler
    settings: Settings = request.app.state.settings
    return {
        "status": "ok",
        "model": handler.embedder.model_name,
        "store": settings.store.backend,
    }


def create_app(
    settings: Settings | None = None,
    *,
    handler: IndexingHandler | None = None,
) -> FastAPI:
    """Build the app.

    Without *handler*, the embedder and store are built from *settings* and
    connected/loaded in the lifespan, once per process.  A supplied
    *handler* is used as-is and its lifecycle stays with the caller.
    """
    resolved = settings or Settings()
    owned = handler is None
    app_handler = handler or build_handler(resolved)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            if owned:
                await start(app_handler, resolved)
            yield
        finally:
            if owned:
                await stop(app_handler)

    app = FastAPI(
        title="postindex",
        description="Post embedding and semantic-search indexing service",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = resolved
    app.state.handler = app_handler
    app.include_router(router)
    return app
