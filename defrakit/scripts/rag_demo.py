"""
defrakit - RAG Demo
====================
Runs the six-step RAG pipeline once against an in-memory DefraDB node and
a local Ollama instance.

Prerequisites:
    - Ollama running locally (``OLLAMA_BASE_URL``)
    - ``ollama pull nomic-embed-text`` and ``ollama pull gemma:2b``
    - a ``wiki.jsonl`` knowledge base (one ``{"text", "category"}`` per line)

Usage:
    defra-rag
    defra-rag --data-file data/wiki.jsonl --question "Who founded Monarch?"
    defra-rag --url http://127.0.0.1:9181/api/v0     # use a running node
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from defrakit.config.settings import settings
from defrakit.src.core.rag_engine import OllamaClient, RAGPipeline, RAGPipelineError
from defrakit.src.database.defra_node import DefraNode, ensure_keyring_secret
from defrakit.src.utils.logger import get_logger, set_log_level, silence_external_logs

logger = get_logger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="defra-rag", description="Retrieval-augmented generation demo with DefraDB as the vector store.")
    parser.add_argument("--question", default=settings.RAG_QUESTION, help="question to ask the LLM")
    parser.add_argument("--data-file", type=Path, default=settings.RAG_DATA_FILE, help="JSON-lines knowledge base (default: wiki.jsonl)")
    parser.add_argument("--url", default=settings.DEFRA_API_URL, help="attach to a running node's API instead of starting an in-memory one")
    parser.add_argument("--dev", action="store_true", default=False, help="keep DefraDB's own output and library logs")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    # The demo narrates its steps at INFO regardless of ENV
    set_log_level(logging.DEBUG if args.dev else logging.INFO)
    if not args.dev:
        silence_external_logs()

    ensure_keyring_secret()
    t_start = time.perf_counter()

    node = DefraNode(api_url=args.url, in_memory=True, dev=args.dev)
    try:
        pipeline = RAGPipeline(node, OllamaClient(), question=args.question, data_file=args.data_file)
        try:
            pipeline.run()
        except RAGPipelineError as exc:
            logger.critical("%s", exc)
            return 1
    finally:
        node.close()

    logger.info("Done in %.2fs", time.perf_counter() - t_start)
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
