"""
defrakit - Centralized Configuration
=====================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Security
--------
- ``DEFRA_KEYRING_SECRET`` is typed as ``SecretStr`` and is optional.  When
  it is missing the query runner falls back to a fixed development value
  (``DEFRA_DEV_KEYRING_SECRET``).  The raw value is never exposed in repr,
  logs, or tracebacks.
- ``MONGO_URI`` is also ``SecretStr``: connection strings may contain
  credentials and must never leak into logs.

Paths
-----
``STATIC_DIR`` is resolved against the project root so the relay serves
the same ``web/`` directory no matter where it is started from.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``).

    Attributes
    ----------
    ENV : Literal["dev", "prod"]
        Environment mode controlling logging verbosity and, for the relay,
        HSTS headers and canonical-host redirects.
    DEFRA_BINARY : str
        Executable used to spawn a local DefraDB node.
    DEFRA_API_URL : str | None
        When set, the query runner and the RAG demo attach to this node
        (e.g. ``http://127.0.0.1:9181/api/v0``) instead of spawning one.
    DEFRA_KEYRING_SECRET : SecretStr | None
        Keyring secret handed to spawned nodes.
    RELAY_DEFRA_API_URL : str
        DefraDB HTTP API the relay forwards ``POST /defradb`` bodies to.
    MONGO_URI : SecretStr
        MongoDB connection string for the relay's ``POST /mongodb`` route.
    OLLAMA_BASE_URL : str
        OpenAI-compatible endpoint exposed by Ollama (RAG demo).
    SIMILARITY_THRESHOLD : float
        Minimum cosine similarity for a retrieved document.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    STATIC_DIR: Path = BASE_DIR / "web"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"

    # ── DefraDB Node ───────────────────────────────────────────────────
    DEFRA_BINARY: str = "defradb"
    DEFRA_API_URL: str | None = None
    DEFRA_STARTUP_TIMEOUT: float = 30.0
    DEFRA_KEYRING_SECRET: SecretStr | None = None
    DEFRA_DEV_KEYRING_SECRET: str = "dev-dev-dev"

    # ── HTTP Relay ─────────────────────────────────────────────────────
    RELAY_HOST: str = "127.0.0.1"
    RELAY_PORT: int = 8888
    RELAY_DEFRA_API_URL: str = "http://127.0.0.1:9181/api/v0"
    PUBLIC_HOST: str = "localhost"
    STATIC_CACHE: bool = False

    # ── MongoDB ────────────────────────────────────────────────────────
    MONGO_URI: SecretStr = SecretStr("mongodb://127.0.0.1:27017/?replicaSet=rs0")
    MONGO_DEFAULT_DB: str = "myapp"
    MONGO_MAX_POOL_SIZE: int = 10

    # ── Model Configuration (Ollama, OpenAI-compatible API) ────────────
    OLLAMA_BASE_URL: str = "http://localhost:11434/v1"
    OLLAMA_API_KEY: SecretStr = SecretStr("ollama")
    LLM_MODEL: str = "gemma:2b"
    EMBEDDING_PROVIDER: str = "ollama"
    EMBEDDING_MODEL: str = "nomic-embed-text"

    # ── RAG Demo ───────────────────────────────────────────────────────
    RAG_QUESTION: str = "When did the Monarch Company exist?"
    RAG_DATA_FILE: Path = Path("wiki.jsonl")
    SIMILARITY_THRESHOLD: float = 0.63
    SEARCH_RESULTS_LIMIT: int = 2
    DOCUMENT_PREFIX: str = "search_document: "
    QUERY_PREFIX: str = "search_query: "

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("RELAY_PORT")
    @classmethod
    def _port_range(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"RELAY_PORT must be 1–65535, got {v}")
        return v


    @field_validator("SIMILARITY_THRESHOLD")
    @classmethod
    def _threshold_range(cls, v: float) -> float:
        if not -1.0 <= v <= 1.0:
            raise ValueError(f"SIMILARITY_THRESHOLD must be within [-1, 1], got {v}")
        return v


    @field_validator("SEARCH_RESULTS_LIMIT", "MONGO_MAX_POOL_SIZE")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be ≥ 1, got {v}")
        return v

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from defrakit.config.settings import settings
settings = Settings()
