"""
defrakit - Schema Definitions & Idempotent Registration
=========================================================
SDL for the two record types this package owns, plus the
introspection-based ``ensure_schema`` used by the query runner and the RAG
demo.

``ensure_schema`` asks the node whether the type already exists
(``__type(name: ...)``) and only registers the SDL when it does not, so
calling it any number of times in a row is safe.
"""

from __future__ import annotations

from defrakit.config.settings import settings
from defrakit.src.database.defra_node import DefraError, DefraNode
from defrakit.src.utils.logger import get_logger

logger = get_logger(__name__)

# Single JSON-valued key/value record, indexed where lookups happen.
KV_SCHEMA: str = """
type KV {
  key: String @index
  value: JSON
  updatedAt: DateTime @index
}
"""

# ``text_v`` is filled in by the node on every write from ``text``.
WIKI_SCHEMA: str = f"""
type Wiki {{
  text: String
  category: String
  text_v: [Float32!] @embedding(fields: ["text"], provider: "{settings.EMBEDDING_PROVIDER}", model: "{settings.EMBEDDING_MODEL}")
}}
"""

_TYPE_QUERY = 'query {{ __type(name: "{name}") {{ name }} }}'


class SchemaError(DefraError):
    """Registering a schema failed."""


def schema_exists(node: DefraNode, type_name: str) -> bool:
    """Return True when *type_name* is already known to the node."""
    result = node.exec_request(_TYPE_QUERY.format(name=type_name))
    if result.errors:
        logger.debug("Introspection for '%s' returned errors: %s", type_name, result.errors)
        return False
    found = (result.data or {}).get("__type") or {}
    return found.get("name") == type_name


def ensure_schema(node: DefraNode, type_name: str, sdl: str) -> bool:
    """
    Register *sdl* unless *type_name* already exists.

    Returns:
        True if the schema was added by this call, False if it was present.

    Raises:
        SchemaError: If the node rejects the definition.
    """
    if schema_exists(node, type_name):
        logger.debug("Schema '%s' already present.", type_name)
        return False
    try:
        node.add_schema(sdl)
    except DefraError as exc:
        raise SchemaError(f"{type_name} schema add failed: {exc}") from exc
    logger.info("Schema '%s' added.", type_name)
    return True
