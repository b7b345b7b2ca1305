"""
defrakit - Logging
===================
Pre-configured logger factory for consistent output across all modules.

Logging verbosity is driven by ``settings.ENV``:
  • ``"dev"``  → DEBUG level  (maximum detail)
  • ``"prod"`` → WARNING level (errors & warnings only)

Command-line tools can retune every package logger at runtime with
``set_log_level`` and quiet third-party chatter with
``silence_external_logs``.  Suppression only ever touches logger levels and
the environment handed to child processes; the process's own stdout/stderr
are left alone.

Usage:
    from defrakit.src.utils.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Something happened")
"""

import logging
import os
import sys
from typing import TextIO

from defrakit.config.settings import settings

# ── Resolve default level from environment mode ───────────────────────
_ENV_LEVEL_MAP = {
    "dev": logging.DEBUG,
    "prod": logging.WARNING,
}
_DEFAULT_LEVEL = _ENV_LEVEL_MAP.get(settings.ENV, logging.INFO)

_PACKAGE_PREFIX = "defrakit"

# Third-party loggers that are noisy at INFO/DEBUG
_EXTERNAL_LOGGERS = ("urllib3", "requests", "pymongo", "motor", "httpx", "httpcore", "openai", "uvicorn.access")

# Environment variable read by spawned DefraDB nodes
DEFRA_LOG_LEVEL_ENV = "LOG_LEVEL"


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Create and return a named logger with a standardised formatter.

    Args:
        name:  Typically ``__name__`` of the calling module.
        level: Explicit logging level override.
               If *None*, the level is derived from ``settings.ENV``.

    Returns:
        A configured ``logging.Logger`` instance.
    """
    resolved_level = level if level is not None else _DEFAULT_LEVEL
    logger = logging.getLogger(name)

    # Avoid adding duplicate handlers if the logger already exists
    if not logger.handlers:
        logger.setLevel(resolved_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(resolved_level)

        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        # Prevent log propagation to the root logger (avoids duplicates)
        logger.propagate = False

    return logger


def _package_loggers() -> list[logging.Logger]:
    return [
        logger
        for name, logger in list(logging.Logger.manager.loggerDict.items())
        if isinstance(logger, logging.Logger) and (name == _PACKAGE_PREFIX or name.startswith(_PACKAGE_PREFIX + "."))
    ]


def set_log_level(level: int) -> None:
    """Apply *level* to every already-created package logger and its handlers."""
    for logger in _package_loggers():
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)


def set_log_sink(stream: TextIO) -> None:
    """Point every package logger's console handler at *stream* (e.g. stderr)."""
    for logger in _package_loggers():
        for handler in logger.handlers:
            if isinstance(handler, logging.StreamHandler):
                handler.setStream(stream)


def silence_external_logs(level: int = logging.WARNING) -> None:
    """
    Quiet third-party loggers and ask spawned DefraDB nodes to log errors only.

    The child-process setting is exported through the environment so every
    node started afterwards inherits it.
    """
    for name in _EXTERNAL_LOGGERS:
        logging.getLogger(name).setLevel(level)
    os.environ.setdefault(DEFRA_LOG_LEVEL_ENV, "error")
