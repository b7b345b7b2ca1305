"""
Unit tests for the MongoDB command dispatcher.

Tests for:
- find limit/skip clamping and defaults
- target validation and unknown ops
- purge accounting (system databases skipped, failed drops counted)
- admin command construction
- BSON values made JSON-safe
"""

import asyncio
import json
import math

import pytest
from bson import ObjectId, Regex, Timestamp
from bson.min_key import MinKey

from defrakit.src.core.mongo_commands import (
    DEFAULT_FIND_LIMIT,
    MAX_FIND_LIMIT,
    MISSING_COMMAND_ERROR,
    MISSING_TARGET_ERROR,
    UNKNOWN_OP_ERROR,
    MongoCommandDispatcher,
    build_command,
    clamp_limit,
    clamp_skip,
    to_json_safe,
)
from tests.fakes import FakeCollection, FakeMongoClient


def _dispatch(client, body, default_db="myapp"):
    response = asyncio.run(MongoCommandDispatcher(client, default_db=default_db).dispatch(body))
    return response.status, json.loads(response.body)


class TestClamping:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, DEFAULT_FIND_LIMIT),
            (0, DEFAULT_FIND_LIMIT),
            (-5, DEFAULT_FIND_LIMIT),
            ("abc", DEFAULT_FIND_LIMIT),
            (math.nan, DEFAULT_FIND_LIMIT),
            (1, 1),
            ("50", 50),
            (499.9, 499),
            (10_000, MAX_FIND_LIMIT),
        ],
    )
    def test_limit(self, value, expected):
        assert clamp_limit(value) == expected

    @pytest.mark.parametrize("value, expected", [(None, 0), (-1, 0), ("x", 0), (math.inf, 0), (0, 0), (7, 7), ("3", 3)])
    def test_skip(self, value, expected):
        assert clamp_skip(value) == expected


class TestBuildCommand:
    def test_name_only(self):
        assert build_command("ping", None) == {"ping": 1}

    def test_body_only(self):
        assert build_command(None, {"buildInfo": 1}) == {"buildInfo": 1}

    def test_existing_key_is_kept(self):
        assert build_command("collStats", {"collStats": "orders", "scale": 1024}) == {"collStats": "orders", "scale": 1024}

    def test_nothing_given(self):
        assert build_command(None, None) == {}


class TestFind:
    def test_defaults(self):
        client = FakeMongoClient()
        coll = client["shop"]["orders"]

        status, body = _dispatch(client, {"op": "find", "db": "shop", "coll": "orders"})

        assert status == 200
        assert body == {"ok": 1, "docs": []}
        assert coll.calls == [("find", {}, None, {"limit": DEFAULT_FIND_LIMIT, "skip": 0})]

    def test_limit_capped_and_sort_converted(self):
        client = FakeMongoClient()
        coll = client["shop"]["orders"]

        _dispatch(client, {"op": "find", "db": "shop", "coll": "orders", "filter": {"n": 1}, "projection": {"n": 1}, "sort": {"n": -1}, "limit": 9999, "skip": -3})

        _, filter_, projection, kwargs = coll.calls[0]
        assert filter_ == {"n": 1}
        assert projection == {"n": 1}
        assert kwargs == {"limit": MAX_FIND_LIMIT, "skip": 0, "sort": [("n", -1)]}

    def test_object_ids_serialised(self):
        client = FakeMongoClient()
        oid = ObjectId("64b7f0c2a1b2c3d4e5f60718")
        client["shop"].collections["orders"] = FakeCollection("orders", docs=[{"_id": oid, "n": 1}])

        _, body = _dispatch(client, {"op": "find", "db": "shop", "coll": "orders"})

        assert body["docs"] == [{"_id": str(oid), "n": 1}]


class TestValidation:
    def test_delete_without_coll_is_400(self):
        status, body = _dispatch(FakeMongoClient(), {"op": "deleteOne", "db": "x"})
        assert (status, body) == (400, {"error": MISSING_TARGET_ERROR})

    def test_unknown_op_is_400(self):
        status, body = _dispatch(FakeMongoClient(), {"op": "dropEverything", "db": "x", "coll": "y"})
        assert (status, body) == (400, {"error": UNKNOWN_OP_ERROR})

    def test_non_object_body_is_400(self):
        status, body = _dispatch(FakeMongoClient(), ["find"])
        assert status == 400
        assert body == {"error": MISSING_TARGET_ERROR}

    def test_driver_error_is_500(self):
        class Exploding(FakeCollection):
            async def delete_one(self, filter):
                raise RuntimeError("socket closed")

        client = FakeMongoClient()
        client["x"].collections["y"] = Exploding("y")

        status, body = _dispatch(client, {"op": "deleteOne", "db": "x", "coll": "y"})

        assert status == 500
        assert body == {"error": "RuntimeError: socket closed"}


class TestWrites:
    def test_insert_one(self):
        status, body = _dispatch(FakeMongoClient(), {"op": "insertOne", "db": "x", "coll": "y", "doc": {"a": 1}})
        assert status == 200
        assert body == {"ok": 1, "insertedId": "64b7f0c2a1b2c3d4e5f60718"}

    def test_update_one_passes_upsert(self):
        client = FakeMongoClient()
        coll = client["x"]["y"]

        _, body = _dispatch(client, {"op": "updateOne", "db": "x", "coll": "y", "filter": {"a": 1}, "update": {"$set": {"b": 2}}, "options": {"upsert": True}})

        assert coll.calls == [("update_one", {"a": 1}, {"$set": {"b": 2}}, True)]
        assert body == {"ok": 1, "matched": 1, "modified": 1, "upsertedId": None}

    def test_delete_one(self):
        _, body = _dispatch(FakeMongoClient(), {"op": "deleteOne", "db": "x", "coll": "y", "filter": {"a": 1}})
        assert body == {"ok": 1, "deletedCount": 1}

    def test_aggregate(self):
        client = FakeMongoClient()
        coll = client["x"]["y"]

        _dispatch(client, {"op": "aggregate", "db": "x", "coll": "y", "pipeline": [{"$match": {}}], "options": {"allowDiskUse": True}})

        assert coll.calls == [("aggregate", [{"$match": {}}], {"allowDiskUse": True})]


class TestPurge:
    def test_system_databases_skipped(self):
        client = FakeMongoClient(database_names=["admin", "local", "config", "shop", "blog"])

        status, body = _dispatch(client, {"op": "purge"})

        assert status == 200
        assert body == {"success": True, "dbCount": 2, "dropCount": 2}
        assert client.dropped == ["shop", "blog"]

    def test_failed_drop_reported(self):
        client = FakeMongoClient(database_names=["shop", "blog"], failing=["blog"])

        _, body = _dispatch(client, {"op": "purge"})

        assert body == {"success": False, "dbCount": 2, "dropCount": 1}

    def test_nothing_to_drop(self):
        _, body = _dispatch(FakeMongoClient(database_names=["admin"]), {"op": "purge"})
        assert body == {"success": True, "dbCount": 0, "dropCount": 0}


class TestCommand:
    def test_missing_command_is_400(self):
        status, body = _dispatch(FakeMongoClient(), {"op": "command", "db": "x"})
        assert (status, body) == (400, {"error": MISSING_COMMAND_ERROR})

    def test_runs_against_default_db(self):
        client = FakeMongoClient()

        status, body = _dispatch(client, {"op": "command", "command": "ping"}, default_db="myapp")

        assert status == 200
        assert client["myapp"].commands == [{"ping": 1}]
        assert body == {"ok": 1, "result": {"ok": 1.0, "echo": {"ping": 1}}}


class TestToJsonSafe:
    def test_nested_values(self):
        oid = ObjectId()
        assert to_json_safe({"ids": [oid], "raw": b"\x01\x02"}) == {"ids": [str(oid)], "raw": "0102"}

    def test_bson_only_types_become_extended_json(self):
        doc = {"ts": Timestamp(1, 1), "pattern": Regex("^a", "i"), "low": MinKey()}

        assert to_json_safe(doc) == {
            "ts": {"$timestamp": {"t": 1, "i": 1}},
            "pattern": {"$regularExpression": {"pattern": "^a", "options": "i"}},
            "low": {"$minKey": 1},
        }


class TestReplicaSetReplies:
    """Replica-set members stamp every reply with cluster Timestamps."""

    def test_command_reply_with_cluster_time(self):
        client = FakeMongoClient()

        async def replica_set_command(cmd):
            return {"ok": 1.0, "$clusterTime": {"clusterTime": Timestamp(1700000000, 1)}, "operationTime": Timestamp(1700000000, 1)}

        client["myapp"].command = replica_set_command

        status, body = _dispatch(client, {"op": "command", "command": "ping"})

        assert status == 200
        assert body["result"]["operationTime"] == {"$timestamp": {"t": 1700000000, "i": 1}}
        assert body["result"]["$clusterTime"]["clusterTime"] == {"$timestamp": {"t": 1700000000, "i": 1}}

    def test_found_docs_with_timestamp_and_regex(self):
        client = FakeMongoClient()
        client["local"].collections["oplog.rs"] = FakeCollection("oplog.rs", docs=[{"ts": Timestamp(1, 1), "re": Regex("x")}])

        status, body = _dispatch(client, {"op": "find", "db": "local", "coll": "oplog.rs"})

        assert status == 200
        assert body["docs"][0]["ts"] == {"$timestamp": {"t": 1, "i": 1}}
        assert body["docs"][0]["re"]["$regularExpression"]["pattern"] == "x"
