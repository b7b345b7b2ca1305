"""
src/main.py: Relay Application Factory

Responsibility:
    Builds the FastAPI relay: registers the routes from src/api/routes.py,
    owns the shared collaborators on ``app.state`` and installs the
    production-only canonical-host / HTTPS redirects.

    Collaborators can be injected (tests do this); whatever the factory
    creates itself is released when the lifespan ends.

    ┌──────────────────────┬────────────────────────────────────────────┐
    │ app.state attribute  │ owner / lifetime                            │
    ├──────────────────────┼────────────────────────────────────────────┤
    │ mongo_client         │ motor client, created in lifespan           │
    │ mongo_dispatcher     │ MongoCommandDispatcher over mongo_client    │
    │ defra_relay          │ DefraRelay (requests.Session)               │
    │ static_files         │ StaticFileServer rooted at STATIC_DIR       │
    └──────────────────────┴────────────────────────────────────────────┘

Related Files:
    - src/api/routes.py           → Route definitions mounted here
    - src/core/defra_relay.py     → POST /defradb forwarding
    - src/core/mongo_commands.py  → POST /mongodb command protocol
    - src/core/static_files.py    → GET/HEAD static serving
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from email.utils import formatdate
from typing import Any, AsyncIterator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from defrakit.config.settings import settings
from defrakit.src.api.routes import JSON_MEDIA_TYPE, router
from defrakit.src.core.defra_relay import DefraRelay
from defrakit.src.core.mongo_commands import MongoCommandDispatcher
from defrakit.src.core.static_files import StaticFileServer
from defrakit.src.database.mongo_client import create_mongo_client
from defrakit.src.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(mongo_client: Any | None = None, defra_relay: DefraRelay | None = None, static_files: StaticFileServer | None = None, production: bool | None = None) -> FastAPI:
    """
    Build the relay application.

    Parameters
    ----------
    mongo_client
        Motor client (or fake).  Created from ``settings.MONGO_URI`` when omitted.
    defra_relay
        Forwarder for ``POST /defradb``.  Targets ``settings.RELAY_DEFRA_API_URL`` when omitted.
    static_files
        Static server.  Rooted at ``settings.STATIC_DIR`` when omitted.
    production
        Force production behaviour; defaults to ``settings.ENV == "prod"``.
    """
    is_prod = settings.ENV == "prod" if production is None else production

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owns_client = app.state.mongo_client is None
        if owns_client:
            app.state.mongo_client = create_mongo_client()
        app.state.mongo_dispatcher = MongoCommandDispatcher(app.state.mongo_client)
        logger.info("Relay started (production=%s, static root=%s).", is_prod, app.state.static_files.root)
        try:
            yield
        finally:
            if owns_client:
                app.state.mongo_client.close()
            app.state.defra_relay.close()
            logger.info("Relay stopped.")

    app = FastAPI(title="defrakit relay", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.mongo_client = mongo_client
    app.state.defra_relay = defra_relay or DefraRelay(settings.RELAY_DEFRA_API_URL)
    app.state.static_files = static_files or StaticFileServer(settings.STATIC_DIR, production=is_prod, cache=settings.STATIC_CACHE)

    if is_prod:

        @app.middleware("http")
        async def canonical_https(request: Request, call_next: Any) -> Response:
            target = f"https://{settings.PUBLIC_HOST}{request.url.path}"
            if request.url.query:
                target += f"?{request.url.query}"

            if request.headers.get("host") != settings.PUBLIC_HOST:
                return Response(status_code=307, headers={"Location": target, "Cache-Control": "public, max-age=3600", "Expires": formatdate(time.time() + 3600, usegmt=True)})
            if request.headers.get("x-forwarded-proto") != "https":
                return Response(status_code=301, headers={"Location": target, "Cache-Control": "public, max-age=31536000", "Expires": formatdate(time.time() + 31536000, usegmt=True)})
            return await call_next(request)

    # Methods with no route (TRACE, CONNECT) answer like unknown paths
    @app.exception_handler(405)
    async def method_not_allowed(request: Request, exc: Exception) -> Response:
        return Response(status_code=404)

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": str(exc)}, media_type=JSON_MEDIA_TYPE)

    app.include_router(router)
    return app


def start_server(host: str | None = None, port: int | None = None) -> None:
    """Run the relay under uvicorn (blocking)."""
    uvicorn.run(create_app(), host=host or settings.RELAY_HOST, port=port or settings.RELAY_PORT, log_level="info" if settings.ENV == "dev" else "warning")
