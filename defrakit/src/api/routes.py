"""
defrakit - Relay Routes
========================
Thin controllers for the HTTP relay:

  - POST /defradb        → DefraRelay (shape-based forward to DefraDB)
  - POST /mongodb        → MongoCommandDispatcher (JSON command protocol)
  - GET/HEAD everything  → StaticFileServer (with SPA fallback)
  - anything else        → 404

Handlers only parse the body and pick the collaborator from ``app.state``;
no business logic lives here.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import Response
from fastapi.concurrency import run_in_threadpool

from defrakit.src.core.defra_relay import DefraRequest, RelayResponse

JSON_MEDIA_TYPE = "application/json; charset=utf-8"

router = APIRouter()


async def read_body(request: Request) -> Any:
    """Parse the body as JSON; anything else is wrapped as ``{"raw": text}``."""
    raw = await request.body()
    try:
        return json.loads(raw)
    except ValueError:
        return {"raw": raw.decode("utf-8", errors="replace")}


def json_response(result: RelayResponse) -> Response:
    return Response(content=result.body, status_code=result.status, media_type=JSON_MEDIA_TYPE)


@router.post("/defradb")
async def defradb(request: Request) -> Response:
    """Forward a query, schema, or purge body to DefraDB."""
    defra_request = DefraRequest.from_body(await read_body(request))
    result = await run_in_threadpool(request.app.state.defra_relay.forward, defra_request, dict(request.headers))
    return json_response(result)


@router.post("/mongodb")
async def mongodb(request: Request) -> Response:
    """Run one document-store command."""
    result = await request.app.state.mongo_dispatcher.dispatch(await read_body(request))
    return json_response(result)


@router.api_route("/{path:path}", methods=["GET", "HEAD"])
def static_files(request: Request, path: str) -> Response:
    return request.app.state.static_files.serve(request.url.path, request.method, request.headers.get("accept-encoding", ""))


@router.api_route("/{path:path}", methods=["POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
def not_found(path: str) -> Response:
    return Response(status_code=404)
