"""
defrakit - DefraNode
=====================
Thin client around a DefraDB node's HTTP API (``/api/v0``).

A ``DefraNode`` either **spawns** a private ``defradb`` process bound to
loopback (P2P disabled, storage under ``rootdir``) or **attaches** to a node
that is already running when ``api_url`` is given.  Either way, the rest of
the package talks to it through the same handful of calls:

  • ``exec_request``  GraphQL query/mutation; GraphQL errors are returned
  • ``add_schema``    register an SDL type definition
  • ``purge``         wipe all data (dev-mode nodes only)
  • document, schema-listing and backup helpers

Design decisions:
  • **Explicit ownership**: one ``requests.Session`` and at most one child
    process per node, both released by ``close()`` (idempotent).
  • **No retries**: a failed call surfaces immediately as an exception or
    as ``RequestResult.errors``.
  • **Quiet children**: outside dev mode the child's output is sent to
    ``os.devnull``; log levels travel through the environment.

Usage:
    from defrakit.src.database.defra_node import DefraNode

    with DefraNode(rootdir="/tmp/.defra-kv") as node:
        result = node.exec_request("query { KV { key value } }")
"""

from __future__ import annotations

import os
import socket
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

from defrakit.config.settings import settings
from defrakit.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Type Aliases ──────────────────────────────────────────────────────
GraphQLError = dict[str, Any]
Variables = dict[str, Any]

KEYRING_SECRET_ENV = "DEFRA_KEYRING_SECRET"

_READY_POLL_INTERVAL_S = 0.2
_READY_POLL_TIMEOUT_S = 1.0
_SHUTDOWN_GRACE_S = 10.0


# ══════════════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════════════


class DefraError(Exception):
    """Base class for every DefraDB client failure."""


class DefraNodeError(DefraError):
    """The node could not be spawned, reached, or talked to."""


class DefraHTTPError(DefraError):
    """The node answered with a non-success HTTP status."""

    def __init__(self, status: int, body: str, url: str = "") -> None:
        self.status = status
        self.body = body
        self.url = url
        super().__init__(f"DefraDB returned {status} for {url or 'request'}: {body}")


# ══════════════════════════════════════════════════════════════════════
#  RESULT TYPE
# ══════════════════════════════════════════════════════════════════════


@dataclass
class RequestResult:
    """GraphQL response envelope: ``data`` plus a (possibly empty) error list."""

    data: Any = None
    errors: list[GraphQLError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════


def resolve_rootdir(path: str | os.PathLike[str]) -> Path:
    """
    Expand ``~``, make *path* absolute, and create it (mode 0o755).

    Raises:
        DefraNodeError: If the directory cannot be created.
    """
    resolved = Path(path).expanduser()
    if not resolved.is_absolute():
        resolved = resolved.absolute()
    try:
        resolved.mkdir(mode=0o755, parents=True, exist_ok=True)
    except OSError as exc:
        raise DefraNodeError(f"create rootdir: {exc}") from exc
    return resolved


def ensure_keyring_secret(secret: str | None = None) -> None:
    """
    Export the keyring secret for spawned nodes.

    An explicit *secret* wins; otherwise an existing environment value or
    ``settings.DEFRA_KEYRING_SECRET`` is kept; failing both, the fixed
    development secret is used.
    """
    if secret:
        os.environ[KEYRING_SECRET_ENV] = secret
    if not os.environ.get(KEYRING_SECRET_ENV):
        configured = settings.DEFRA_KEYRING_SECRET.get_secret_value() if settings.DEFRA_KEYRING_SECRET else ""
        os.environ[KEYRING_SECRET_ENV] = configured or settings.DEFRA_DEV_KEYRING_SECRET


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


# ══════════════════════════════════════════════════════════════════════
#  NODE
# ══════════════════════════════════════════════════════════════════════


class DefraNode:
    """
    Handle on a single DefraDB node.

    Parameters
    ----------
    rootdir
        Data/config directory for a spawned node.  Created if missing.
    api_url
        Attach to this API base URL instead of spawning a process.
    in_memory
        Spawn with the in-memory store (nothing is persisted).
    dev
        Inherit the child's output instead of discarding it.
    binary
        ``defradb`` executable.  Defaults to ``settings.DEFRA_BINARY``.
    startup_timeout
        Seconds to wait for a spawned node to answer.
    """

    def __init__(self, rootdir: str | os.PathLike[str] | None = None, api_url: str | None = None, in_memory: bool = False, dev: bool = False, binary: str | None = None, startup_timeout: float | None = None) -> None:
        self.rootdir: Path | None = resolve_rootdir(rootdir) if rootdir is not None else None
        self.api_url: str | None = api_url.rstrip("/") if api_url else None
        self.in_memory = in_memory
        self.dev = dev
        self.binary = binary or settings.DEFRA_BINARY
        self.startup_timeout = startup_timeout if startup_timeout is not None else settings.DEFRA_STARTUP_TIMEOUT
        self._spawn = api_url is None
        self._process: subprocess.Popen[bytes] | None = None
        self._session = requests.Session()
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Spawn (or attach to) the node and block until its API answers."""
        if self._closed:
            raise DefraNodeError("node is closed")
        if self._spawn:
            self._start_process()
        self._wait_ready()
        logger.info("DefraDB node ready at %s", self.api_url)


    def close(self) -> None:
        """Stop a spawned child and release the HTTP session.  Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        process, self._process = self._process, None
        if process is not None and process.poll() is None:
            logger.debug("Stopping DefraDB node (pid %d)", process.pid)
            process.terminate()
            try:
                process.wait(timeout=_SHUTDOWN_GRACE_S)
            except subprocess.TimeoutExpired:
                logger.warning("DefraDB node did not exit in %.0fs; killing it.", _SHUTDOWN_GRACE_S)
                process.kill()
                process.wait()
        self._session.close()


    def __enter__(self) -> DefraNode:
        self.start()
        return self


    def __exit__(self, *exc_info: object) -> None:
        self.close()


    def _start_process(self) -> None:
        if self.rootdir is None and not self.in_memory:
            raise DefraNodeError("a rootdir is required for a persistent node")

        port = _free_port()
        self.api_url = f"http://127.0.0.1:{port}/api/v0"

        cmd = [self.binary, "start", "--url", f"127.0.0.1:{port}", "--no-p2p"]
        if self.rootdir is not None:
            cmd += ["--rootdir", str(self.rootdir)]
        if self.in_memory:
            cmd += ["--store", "memory"]

        ensure_keyring_secret()
        sink = None if self.dev else subprocess.DEVNULL
        logger.debug("Spawning DefraDB: %s", " ".join(cmd))
        try:
            self._process = subprocess.Popen(cmd, env=dict(os.environ), stdout=sink, stderr=sink)
        except OSError as exc:
            raise DefraNodeError(f"node.New: cannot run {self.binary!r}: {exc}") from exc


    def _wait_ready(self) -> None:
        deadline = time.monotonic() + self.startup_timeout
        while True:
            if self._process is not None and self._process.poll() is not None:
                raise DefraNodeError(f"node.Start: defradb exited with code {self._process.returncode}")
            try:
                self._session.get(f"{self.api_url}/schema", timeout=_READY_POLL_TIMEOUT_S)
                return
            except requests.RequestException as exc:
                if time.monotonic() >= deadline:
                    raise DefraNodeError(f"node.Start: {self.api_url} not reachable after {self.startup_timeout:.0f}s: {exc}") from exc
            time.sleep(_READY_POLL_INTERVAL_S)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        if not self.api_url:
            raise DefraNodeError("node is not started")
        return f"{self.api_url}/{path.lstrip('/')}"


    def _call(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = self._url(path)
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise DefraNodeError(f"{method} {url} failed: {exc}") from exc
        if not response.ok:
            raise DefraHTTPError(response.status_code, response.text, url)
        return response


    @staticmethod
    def _json_or_none(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # ------------------------------------------------------------------
    # GraphQL
    # ------------------------------------------------------------------

    def exec_request(self, query: str, variables: Variables | None = None, timeout: float | None = None, operation_name: str | None = None) -> RequestResult:
        """
        Execute a GraphQL query or mutation.

        GraphQL-level errors (including a timeout on this request) are
        reported in ``RequestResult.errors``; only transport failures raise.
        """
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        if operation_name:
            payload["operationName"] = operation_name

        url = self._url("graphql")
        try:
            response = self._session.post(url, json=payload, timeout=timeout)
        except requests.Timeout:
            return RequestResult(errors=[{"message": f"request timed out after {timeout}s"}])
        except requests.RequestException as exc:
            raise DefraNodeError(f"POST {url} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict) or not ({"data", "errors"} & body.keys()):
            if not response.ok:
                raise DefraHTTPError(response.status_code, response.text, url)
            raise DefraNodeError(f"unexpected GraphQL response from {url}: {response.text[:200]}")

        errors = body.get("errors") or []
        if isinstance(errors, dict):
            errors = [errors]
        return RequestResult(data=body.get("data"), errors=list(errors))

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def add_schema(self, sdl: str) -> Any:
        """Register one or more SDL type definitions; returns the node's description."""
        response = self._call("POST", "schema", data=sdl.encode("utf-8"), headers={"Content-Type": "text/plain"})
        return self._json_or_none(response)


    def list_schemas(self, name: str | None = None) -> Any:
        """Return schema descriptions, optionally filtered by type name."""
        params = {"name": name} if name else None
        return self._json_or_none(self._call("GET", "schema", params=params))


    def purge(self) -> None:
        """Delete all persisted data (the node must run in dev mode)."""
        self._call("POST", "purge")

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_document(self, collection: str, document: dict[str, Any] | list[dict[str, Any]]) -> Any:
        """Create one document, or several when *document* is a list."""
        return self._json_or_none(self._call("POST", f"collections/{collection}", json=document))


    def get_document(self, collection: str, doc_id: str) -> Any:
        return self._json_or_none(self._call("GET", f"collections/{collection}/{doc_id}"))


    def update_document(self, collection: str, doc_id: str, patch: dict[str, Any]) -> Any:
        return self._json_or_none(self._call("PATCH", f"collections/{collection}/{doc_id}", json=patch))


    def delete_document(self, collection: str, doc_id: str) -> Any:
        return self._json_or_none(self._call("DELETE", f"collections/{collection}/{doc_id}"))

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def export_backup(self, filepath: str | os.PathLike[str], collections: list[str] | None = None, pretty: bool = False) -> None:
        """Write a JSON backup of *collections* (all when omitted) on the node's host."""
        config: dict[str, Any] = {"filepath": str(filepath), "format": "json", "pretty": pretty}
        if collections:
            config["collections"] = collections
        self._call("POST", "backup/export", json=config)


    def import_backup(self, filepath: str | os.PathLike[str]) -> None:
        self._call("POST", "backup/import", json={"filepath": str(filepath)})


    def __repr__(self) -> str:
        mode = "spawned" if self._spawn else "attached"
        return f"DefraNode(api='{self.api_url}', rootdir='{self.rootdir}', mode={mode})"
