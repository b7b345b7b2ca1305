"""
defrakit - MongoDB Command Dispatcher
======================================
Translates the relay's small JSON command protocol (``POST /mongodb``)
into ``motor`` calls.

Protocol
--------
Every body carries ``op``; most ops also need ``db`` and ``coll``::

    {"op": "find", "db": "shop", "coll": "orders",
     "filter": {...}, "projection": {...}, "sort": {...},
     "limit": 20, "skip": 0}

``purge`` and ``command`` work without ``coll``:

    • ``purge``    drop every non-system database, reporting how many were
                   attempted and how many succeeded
    • ``command``  run an admin command document against ``db``
                   (default ``settings.MONGO_DEFAULT_DB``)

Results are returned as ``RelayResponse`` objects with BSON values made
JSON-safe (``ObjectId`` → hex string, ``datetime`` → ISO 8601, and
``Timestamp``, ``Regex`` and the other BSON-only types → relaxed Extended
JSON such as ``{"$timestamp": {"t": ..., "i": ...}}``).
"""

from __future__ import annotations

import math
from typing import Any, Awaitable, Callable

from bson import DBRef, Decimal128, ObjectId, Regex, Timestamp, json_util
from bson.code import Code
from bson.max_key import MaxKey
from bson.min_key import MinKey
from fastapi.encoders import jsonable_encoder
from pymongo.errors import PyMongoError

from defrakit.config.settings import settings
from defrakit.src.core.defra_relay import RelayResponse
from defrakit.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Constants ──────────────────────────────────────────────────────────
SYSTEM_DATABASES = frozenset({"admin", "local", "config"})
DEFAULT_FIND_LIMIT = 20
MAX_FIND_LIMIT = 500

MISSING_COMMAND_ERROR = "Missing command. Provide `command` (e.g. 'ping') or `commandBody` (e.g. {\"buildInfo\":1})."
MISSING_TARGET_ERROR = "'db' and 'coll' are required"
UNKNOWN_OP_ERROR = "unknown op"


def _extended_json(value: Any) -> Any:
    """Relaxed Extended JSON for BSON types with no plain JSON form (``{"$timestamp": ...}``)."""
    return to_json_safe(json_util.default(value, json_options=json_util.RELAXED_JSON_OPTIONS))


_BSON_ENCODERS: dict[type, Callable[[Any], Any]] = {
    ObjectId: str,
    Decimal128: str,
    bytes: lambda b: b.hex(),
    Timestamp: _extended_json,
    Regex: _extended_json,
    Code: _extended_json,
    MinKey: _extended_json,
    MaxKey: _extended_json,
    DBRef: _extended_json,
}

CommandBody = dict[str, Any]


def to_json_safe(value: Any) -> Any:
    """Convert BSON-typed values into plain JSON-serialisable structures."""
    return jsonable_encoder(value, custom_encoder=_BSON_ENCODERS)


def _as_number(value: Any) -> float | None:
    """Loose numeric coercion: numbers and numeric strings, else None."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def clamp_limit(value: Any) -> int:
    """Missing, non-numeric, or non-positive → 20; anything else capped at 500."""
    number = _as_number(value)
    if number is None or number < 1:
        return DEFAULT_FIND_LIMIT
    return int(min(number, MAX_FIND_LIMIT))


def clamp_skip(value: Any) -> int:
    """Missing, non-numeric, or negative → 0."""
    number = _as_number(value)
    if number is None or number < 0 or math.isinf(number):
        return 0
    return int(number)


def _sort_spec(sort: Any) -> Any:
    """PyMongo wants ``[(key, direction), ...]``; JSON clients send an object."""
    if isinstance(sort, dict):
        return list(sort.items())
    if isinstance(sort, list):
        return [tuple(item) if isinstance(item, list) else item for item in sort]
    return sort


def build_command(command: Any, command_body: Any) -> CommandBody:
    """Merge ``commandBody`` with ``{command: 1}`` unless already set."""
    cmd: CommandBody = dict(command_body) if isinstance(command_body, dict) else {}
    if command and not cmd.get(command):
        cmd[command] = 1
    return cmd


# ══════════════════════════════════════════════════════════════════════
#  DISPATCHER
# ══════════════════════════════════════════════════════════════════════


class MongoCommandDispatcher:
    """
    Stateless translator from command bodies to MongoDB calls.

    Parameters
    ----------
    client
        A ``motor.motor_asyncio.AsyncIOMotorClient`` (or compatible fake).
    default_db
        Database used by ``command`` when the body names none.
    """

    __slots__ = ("_client", "_default_db", "_ops")

    def __init__(self, client: Any, default_db: str | None = None) -> None:
        self._client = client
        self._default_db = default_db or settings.MONGO_DEFAULT_DB
        self._ops: dict[str, Callable[[Any, CommandBody], Awaitable[RelayResponse]]] = {
            "find": self._find,
            "insertOne": self._insert_one,
            "updateOne": self._update_one,
            "deleteOne": self._delete_one,
            "aggregate": self._aggregate,
        }


    async def dispatch(self, body: Any) -> RelayResponse:
        """Validate *body*, run the operation, and wrap the result."""
        fields: CommandBody = body if isinstance(body, dict) else {}
        op_name = fields.get("op")
        db_name = fields.get("db")
        coll_name = fields.get("coll")

        try:
            if op_name == "purge":
                return await self._purge()
            if op_name == "command":
                return await self._command(db_name, fields)

            if not (db_name and coll_name):
                return RelayResponse.from_data(400, {"error": MISSING_TARGET_ERROR})

            handler = self._ops.get(op_name) if isinstance(op_name, str) else None
            if handler is None:
                return RelayResponse.from_data(400, {"error": UNKNOWN_OP_ERROR})

            coll = self._client[db_name][coll_name]
            return await handler(coll, fields)
        except Exception as exc:
            logger.exception("MongoDB op '%s' failed.", op_name)
            return RelayResponse.from_data(500, {"error": f"{type(exc).__name__}: {exc}"})

    # ------------------------------------------------------------------
    # Database-level operations
    # ------------------------------------------------------------------

    async def _purge(self) -> RelayResponse:
        listing = await self._client.admin.command({"listDatabases": 1, "nameOnly": True})
        db_count = 0
        drop_count = 0
        for entry in listing.get("databases", []):
            name = entry.get("name")
            if name in SYSTEM_DATABASES:
                continue
            db_count += 1
            try:
                await self._client.drop_database(name)
                drop_count += 1
            except PyMongoError as exc:
                logger.warning("Dropping database '%s' failed: %s", name, exc)

        logger.info("Purge dropped %d of %d database(s).", drop_count, db_count)
        return RelayResponse.from_data(200, {"success": db_count == drop_count, "dbCount": db_count, "dropCount": drop_count})


    async def _command(self, db_name: Any, fields: CommandBody) -> RelayResponse:
        cmd = build_command(fields.get("command"), fields.get("commandBody"))
        if not cmd:
            return RelayResponse.from_data(400, {"error": MISSING_COMMAND_ERROR})

        db = self._client[db_name or self._default_db]
        result = await db.command(cmd)
        return RelayResponse.from_data(200, {"ok": 1, "result": to_json_safe(result)})

    # ------------------------------------------------------------------
    # Collection-level operations
    # ------------------------------------------------------------------

    async def _find(self, coll: Any, fields: CommandBody) -> RelayResponse:
        kwargs: dict[str, Any] = {"limit": clamp_limit(fields.get("limit")), "skip": clamp_skip(fields.get("skip"))}
        if fields.get("sort"):
            kwargs["sort"] = _sort_spec(fields["sort"])
        cursor = coll.find(fields.get("filter") or {}, fields.get("projection"), **kwargs)
        docs = await cursor.to_list(length=None)
        return RelayResponse.from_data(200, {"ok": 1, "docs": to_json_safe(docs)})


    async def _insert_one(self, coll: Any, fields: CommandBody) -> RelayResponse:
        result = await coll.insert_one(fields.get("doc") or {})
        return RelayResponse.from_data(200, {"ok": 1, "insertedId": to_json_safe(result.inserted_id)})


    async def _update_one(self, coll: Any, fields: CommandBody) -> RelayResponse:
        options = fields.get("options") or {}
        result = await coll.update_one(fields.get("filter") or {}, fields.get("update") or {}, upsert=bool(options.get("upsert")))
        return RelayResponse.from_data(200, {"ok": 1, "matched": result.matched_count, "modified": result.modified_count, "upsertedId": to_json_safe(result.upserted_id)})


    async def _delete_one(self, coll: Any, fields: CommandBody) -> RelayResponse:
        result = await coll.delete_one(fields.get("filter") or {})
        return RelayResponse.from_data(200, {"ok": 1, "deletedCount": result.deleted_count})


    async def _aggregate(self, coll: Any, fields: CommandBody) -> RelayResponse:
        options = fields.get("options") or {}
        cursor = coll.aggregate(fields.get("pipeline") or [], **options)
        docs = await cursor.to_list(length=None)
        return RelayResponse.from_data(200, {"ok": 1, "docs": to_json_safe(docs)})
