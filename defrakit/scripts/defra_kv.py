"""
defrakit - KV Query Runner
===========================
CLI entry point that opens a DefraDB node, guarantees the ``KV`` schema,
runs exactly one GraphQL query/mutation, and prints the result.

Flow:
    1. Export the keyring secret (flag → env → development default).
    2. Read the query from ``--query`` or stdin.
    3. Start the node at ``--rootdir`` (or attach to ``--url``).
    4. Ensure the ``KV`` schema (idempotent).
    5. Execute with ``--vars`` under ``--timeout``.
    6. Print ``{"data": ...}`` to stdout, or the error list to stderr.

Exit codes:
    0  success
    1  setup failure or query errors
    2  no query given
    130  interrupted by SIGINT/SIGTERM

Usage:
    defra-kv --query 'mutation { create_KV(input: {key: "a", value: 1}) { _docID } }'
    echo 'query { KV { key value } }' | defra-kv --no-pretty
    python -m defrakit.scripts.defra_kv --vars '{"k": "a"}' --query 'query ($k: String) { KV(filter: {key: {_eq: $k}}) { value } }'
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Callable

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from defrakit.config.settings import settings
from defrakit.src.database.defra_node import DefraError, DefraNode, ensure_keyring_secret
from defrakit.src.database.schema import KV_SCHEMA, ensure_schema
from defrakit.src.utils.durations import parse_duration
from defrakit.src.utils.logger import get_logger, set_log_level, set_log_sink, silence_external_logs

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


class ShutdownRequested(Exception):
    """Raised from the SIGINT/SIGTERM handler to unwind and close the node."""


# ── CLI Argument Parsing ───────────────────────────────────────────────

def _default_rootdir() -> str:
    try:
        return str(Path.cwd() / ".defra-kv")
    except OSError:
        return ".defra-kv"


def _duration(value: str) -> float:
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="defra-kv", description="Run one GraphQL query against a local DefraDB node with a ready-made KV schema.")
    parser.add_argument("--rootdir", default=_default_rootdir(), help="data/config directory (default: ./.defra-kv)")
    parser.add_argument("--keyring-secret", default="", help="keyring secret (or set DEFRA_KEYRING_SECRET)")
    parser.add_argument("--query", default="", help="GraphQL query/mutation; if empty, read from stdin")
    parser.add_argument("--vars", default="", help="JSON variables (optional)")
    parser.add_argument("--pretty", action=argparse.BooleanOptionalAction, default=True, help="pretty-print JSON (default: on)")
    parser.add_argument("--timeout", type=_duration, default="10s", help="per-request timeout, e.g. 500ms, 10s, 1m (default: 10s)")
    parser.add_argument("--dev", action="store_true", default=False, help="verbose logging; keep DefraDB's own output")
    parser.add_argument("--url", default=settings.DEFRA_API_URL, help="attach to a running node's API instead of starting one")
    return parser.parse_args(argv)


def _parse_vars(raw: str) -> dict[str, Any] | None:
    text = raw.strip()
    if not text:
        return None
    variables = json.loads(text)
    if not isinstance(variables, dict):
        raise ValueError("variables must be a JSON object")
    return variables


def _dump(payload: Any, pretty: bool) -> str:
    if pretty:
        return json.dumps(payload, indent=2, ensure_ascii=False)
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _request_shutdown(signum: int, frame: object) -> None:
    raise ShutdownRequested(signal.Signals(signum).name)


# ── Main Orchestration ─────────────────────────────────────────────────

def main(argv: list[str] | None = None, node_factory: Callable[..., DefraNode] = DefraNode) -> int:
    args = _parse_args(argv)

    # stdout carries the result document only
    set_log_sink(sys.stderr)
    if args.dev:
        set_log_level(logging.DEBUG)
    else:
        set_log_level(logging.WARNING)
        silence_external_logs()

    ensure_keyring_secret(args.keyring_secret or None)

    query = args.query.strip() or sys.stdin.read().strip()
    if not query:
        print("no query provided; pass --query or pipe to stdin", file=sys.stderr)
        return EXIT_USAGE

    try:
        variables = _parse_vars(args.vars)
    except ValueError as exc:
        logger.critical("parse --vars: %s", exc)
        return EXIT_FAILURE

    previous = {sig: signal.signal(sig, _request_shutdown) for sig in (signal.SIGINT, signal.SIGTERM)}
    node: DefraNode | None = None
    try:
        try:
            node = node_factory(rootdir=args.rootdir, api_url=args.url, dev=args.dev)
            node.start()
            ensure_schema(node, "KV", KV_SCHEMA)
        except DefraError as exc:
            logger.critical("setup failed: %s", exc)
            return EXIT_FAILURE

        try:
            result = node.exec_request(query, variables, timeout=args.timeout)
        except DefraError as exc:
            print(_dump([{"message": str(exc)}], pretty=True), file=sys.stderr)
            return EXIT_FAILURE

        if result.errors:
            print(_dump(result.errors, pretty=True), file=sys.stderr)
            return EXIT_FAILURE

        print(_dump({"data": result.data}, args.pretty))
        return EXIT_OK
    except ShutdownRequested as exc:
        logger.warning("Interrupted by %s; shutting down.", exc)
        return EXIT_INTERRUPTED
    finally:
        if node is not None:
            node.close()
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def run() -> None:
    sys.exit(main())


# ── Entry point ────────────────────────────────────────────────────────

if __name__ == "__main__":
    run()
