"""
defrakit - Static File Server
==============================
Serves the relay's web UI for every GET/HEAD request that is not an API
route.

Resolution
----------
  • ``/defradb`` → ``defradb.html``, ``/mongodb`` → ``mongodb.html``
  • directories → their ``index.html``
  • anything else → the path itself, confined to the static root

Header augmentation (by content type)
-------------------------------------
  • ``text/html``                        → Content-Security-Policy
  • CSS, JavaScript, JSON                → ``X-Content-Type-Options: nosniff``
  • html, css, js, json, svg, manifest   → ``; charset=utf-8``
  • text/*, svg, js, json, manifest      → ``Vary: Accept-Encoding`` and gzip
                                           when the client accepts it

When a file is missing the single-page entry document (``index.html``) is
served instead; only if that is missing too does the client get a 404.
"""

from __future__ import annotations

import gzip
import mimetypes
import re
from email.utils import formatdate
from pathlib import Path
from urllib.parse import unquote

from fastapi.responses import Response

from defrakit.src.utils.logger import get_logger

logger = get_logger(__name__)

mimetypes.add_type("application/manifest+json", ".webmanifest")
mimetypes.add_type("text/javascript", ".mjs")

# ── Aliases ────────────────────────────────────────────────────────────
ALIASES: dict[str, str] = {
    "/defradb": "defradb.html",
    "/mongodb": "mongodb.html",
}
SPA_ENTRY = "index.html"
SERVER_INFO = "Defra-Connector"

# ── Header blocks ──────────────────────────────────────────────────────
HSTS_HEADER = {"Strict-Transport-Security": f"max-age={10**9}"}
NOSNIFF_HEADER = {"X-Content-Type-Options": "nosniff"}
CSP_HEADER = {"Content-Security-Policy": "default-src 'self' 'unsafe-inline';"}

_CACHE_MAX_AGE_S = 60 * 60 * 3
_CACHE_STALE_S = 60 * 60 * 24 * 7
_FAVICON_MAX_AGE_S = 60 * 60 * 24 * 30

_RE_GZIP = re.compile(r"^(?:text/.+|image/svg\+xml|text/javascript|application/javascript|application/json|application/manifest\+json)$")
_RE_NOSNIFF = re.compile(r"^(?:text/(?:css|javascript)|application/json)$")
_RE_CHARSET = re.compile(r"^(?:text/(?:html|css|javascript)|application/json|image/svg\+xml|application/manifest\+json)$")


def content_headers(content_type: str) -> tuple[str, dict[str, str]]:
    """
    Return the final ``Content-Type`` value and the extra headers for it.
    """
    if content_type == "application/javascript":
        content_type = "text/javascript"

    headers: dict[str, str] = {}
    if content_type == "text/html":
        headers.update(CSP_HEADER)
    if _RE_NOSNIFF.match(content_type):
        headers.update(NOSNIFF_HEADER)
    if _RE_GZIP.match(content_type):
        headers["Vary"] = "Accept-Encoding"

    if _RE_CHARSET.match(content_type):
        content_type = f"{content_type}; charset=utf-8"
    return content_type, headers


def accepts_gzip(accept_encoding: str) -> bool:
    """True when ``Accept-Encoding`` allows gzip: listed (or ``*``) with a non-zero q-value."""
    qualities: dict[str, float] = {}
    for item in accept_encoding.lower().split(","):
        coding, _, params = item.partition(";")
        quality = 1.0
        for param in params.split(";"):
            name, _, value = param.partition("=")
            if name.strip() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        qualities[coding.strip()] = quality
    # an explicit gzip entry wins over the wildcard
    return qualities.get("gzip", qualities.get("*", 0.0)) > 0


class StaticFileServer:
    """
    Parameters
    ----------
    root
        Directory to serve from.
    production
        Adds HSTS and long favicon caching.
    cache
        Emit ``Cache-Control`` headers for regular files.
    """

    __slots__ = ("root", "production", "cache")

    def __init__(self, root: str | Path, production: bool = False, cache: bool = False) -> None:
        self.root = Path(root).resolve()
        self.production = production
        self.cache = cache


    def resolve(self, url_path: str) -> Path | None:
        """Map a URL path onto an existing file under the root, or None."""
        path = unquote(url_path.split("?", 1)[0]) or "/"
        relative = ALIASES.get(path, path.lstrip("/"))
        try:
            candidate = (self.root / relative).resolve()
            if candidate != self.root and self.root not in candidate.parents:
                logger.warning("Rejected path outside static root: %s", url_path)
                return None
            if candidate.is_dir():
                candidate = candidate / SPA_ENTRY
            return candidate if candidate.is_file() else None
        except (ValueError, OSError) as exc:
            # e.g. a decoded NUL byte
            logger.debug("Unusable static path %r: %s", url_path, exc)
            return None


    def serve(self, url_path: str, method: str = "GET", accept_encoding: str = "") -> Response:
        """Serve *url_path*, falling back to the SPA entry document."""
        if self.production and url_path.split("?", 1)[0] == "/favicon.ico":
            return self._serve_favicon(method, accept_encoding)

        target = self.resolve(url_path)
        if target is not None:
            return self._file_response(target, 200, self._base_headers(), method, accept_encoding)

        entry = self.resolve("/" + SPA_ENTRY)
        if entry is not None:
            logger.debug("No file for %s; serving %s", url_path, SPA_ENTRY)
            headers = self._base_headers()
            headers.update(CSP_HEADER)
            return self._file_response(entry, 200, headers, method, accept_encoding)

        return Response(status_code=404)


    def _serve_favicon(self, method: str, accept_encoding: str) -> Response:
        target = self.resolve("/favicon.ico")
        if target is None:
            return Response(status_code=204, headers={"Content-Type": "image/x-icon", "Cache-Control": "public, max-age=604800"})
        headers = {"Cache-Control": f"public, max-age={_FAVICON_MAX_AGE_S}", **HSTS_HEADER}
        return self._file_response(target, 200, headers, method, accept_encoding)


    def _base_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.production:
            headers.update(HSTS_HEADER)
        if self.cache:
            headers["Cache-Control"] = f"public, max-age={_CACHE_MAX_AGE_S}, stale-while-revalidate={_CACHE_STALE_S}"
        return headers


    def _file_response(self, path: Path, status: int, extra: dict[str, str], method: str, accept_encoding: str) -> Response:
        guessed, _ = mimetypes.guess_type(path.name)
        content_type, headers = content_headers(guessed or "application/octet-stream")

        body = path.read_bytes()
        if "Vary" in headers and accepts_gzip(accept_encoding):
            body = gzip.compress(body)
            headers["Content-Encoding"] = "gzip"

        headers.update(extra)
        headers["Server"] = SERVER_INFO
        headers["Last-Modified"] = formatdate(path.stat().st_mtime, usegmt=True)
        headers["Content-Length"] = str(len(body))
        headers["Content-Type"] = content_type

        if method == "HEAD":
            body = b""
        return Response(content=body, status_code=status, headers=headers)
