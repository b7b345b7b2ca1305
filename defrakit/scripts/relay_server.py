"""
defrakit - Relay Server
========================
Starts the HTTP relay (static files, ``POST /defradb``, ``POST /mongodb``)
under uvicorn.

Usage:
    defra-relay                       # 127.0.0.1:8888 from settings
    defra-relay --host 0.0.0.0 --port 9000
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from defrakit.config.settings import settings
from defrakit.src.main import start_server
from defrakit.src.utils.logger import get_logger, silence_external_logs

logger = get_logger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="defra-relay", description="HTTP relay in front of DefraDB and MongoDB.")
    parser.add_argument("--host", default=settings.RELAY_HOST, help=f"bind address (default: {settings.RELAY_HOST})")
    parser.add_argument("--port", type=int, default=settings.RELAY_PORT, help=f"bind port (default: {settings.RELAY_PORT})")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    if settings.ENV == "prod":
        silence_external_logs()
    logger.info("Serving %s on http://%s:%d (DefraDB API: %s)", settings.STATIC_DIR, args.host, args.port, settings.RELAY_DEFRA_API_URL)
    start_server(host=args.host, port=args.port)


if __name__ == "__main__":
    main()
