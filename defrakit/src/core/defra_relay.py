"""
defrakit - DefraDB Relay
=========================
Forwards ``POST /defradb`` bodies to a DefraDB node's HTTP API.

The inbound JSON body is decoded **once** into a ``DefraRequest`` whose
``mode`` picks the upstream endpoint.  First match wins, in this order:

    body["query"]  truthy → "graphql"  → {api}/graphql  (JSON body)
    body["schema"] truthy → "schema"   → {api}/schema   (SDL as text/plain)
    body["purge"]  truthy → "purge"    → {api}/purge    (empty text/plain)
    otherwise             → None       → {api}/graphql  (empty text/plain)

Upstream replies are mapped to a ``RelayResponse`` (status + JSON text) so
the HTTP layer only has to write it out.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Literal, Mapping

import requests

from defrakit.src.utils.logger import get_logger

logger = get_logger(__name__)

RequestMode = Literal["graphql", "schema", "purge"]

# Inbound headers that must not be replayed upstream
_RE_HOP_HEADERS = re.compile(r"^host$|^connection$|^content-length$|^transfer-encoding$|^expect$|^sec-|^cf-", re.IGNORECASE)

_EMPTY_RESULT = json.dumps({"result": True})


@dataclass(frozen=True)
class RelayResponse:
    """Status code plus an already-serialised JSON body."""

    status: int
    body: str

    @classmethod
    def from_data(cls, status: int, data: Any) -> RelayResponse:
        return cls(status, data if isinstance(data, str) else json.dumps(data))


@dataclass(frozen=True)
class DefraRequest:
    """A ``POST /defradb`` body decoded into its dispatch mode."""

    mode: RequestMode | None
    body: Any

    @classmethod
    def from_body(cls, body: Any) -> DefraRequest:
        fields = body if isinstance(body, dict) else {}
        if fields.get("query"):
            return cls("graphql", body)
        if fields.get("schema"):
            return cls("schema", body)
        if fields.get("purge"):
            return cls("purge", body)
        return cls(None, body)


    @property
    def endpoint(self) -> str:
        if self.mode == "schema":
            return "schema"
        if self.mode == "purge":
            return "purge"
        return "graphql"


    @property
    def content_type(self) -> str:
        return "application/json" if self.mode == "graphql" else "text/plain"


    def payload(self) -> str:
        if self.mode == "graphql":
            return json.dumps(self.body)
        if self.mode == "schema":
            return str(self.body["schema"])
        return ""


def filter_forward_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Drop hop-by-hop, ``sec-*``, ``cf-*`` and ``content-type`` headers."""
    return {k: v for k, v in headers.items() if not _RE_HOP_HEADERS.search(k) and k.lower() != "content-type"}


class DefraRelay:
    """
    Forwards decoded requests to one DefraDB API base URL.

    Parameters
    ----------
    api_url
        e.g. ``http://127.0.0.1:9181/api/v0``.
    session
        Optional ``requests.Session`` (injected in tests).
    """

    __slots__ = ("_api_url", "_session")

    def __init__(self, api_url: str, session: requests.Session | None = None) -> None:
        self._api_url = api_url.rstrip("/")
        self._session = session or requests.Session()


    def forward(self, request: DefraRequest, headers: Mapping[str, str]) -> RelayResponse:
        """Replay *request* upstream and translate the outcome."""
        url = f"{self._api_url}/{request.endpoint}"
        out_headers = filter_forward_headers(headers)
        out_headers["Content-Type"] = request.content_type

        logger.debug("Forwarding %s request to %s", request.mode or "untyped", url)
        try:
            response = self._session.post(url, data=request.payload().encode("utf-8"), headers=out_headers)
        except requests.RequestException as exc:
            logger.error("DefraDB forward to %s failed: %s", url, exc)
            return RelayResponse.from_data(500, {"error": str(exc)})

        if 200 <= response.status_code < 300:
            return RelayResponse(200, response.text or _EMPTY_RESULT)

        logger.warning("DefraDB answered %d for %s", response.status_code, url)
        return RelayResponse.from_data(500, {"error": f"DefraDB could not be reached ({response.status_code}: {response.text})"})


    def close(self) -> None:
        self._session.close()
