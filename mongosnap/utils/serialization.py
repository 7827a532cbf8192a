"""
JSON rendering of query results.

Results are driver-native values (documents with ObjectId, datetime,
Decimal128..., or pymongo write results). They are rendered as relaxed
Extended JSON so the HTTP layer can return them as plain JSON.
"""

from __future__ import annotations

import json
from typing import Any

from bson import json_util
from bson.json_util import JSONMode, JSONOptions
from pymongo.results import (
    BulkWriteResult,
    DeleteResult,
    InsertManyResult,
    InsertOneResult,
    UpdateResult,
)

RELAXED_OPTIONS: JSONOptions = JSONOptions(json_mode=JSONMode.RELAXED, tz_aware=True)

_BSON_SCALARS = (str, int, float, bool, type(None), bytes)


def write_result_to_dict(result: Any) -> dict[str, Any] | None:
    """Shape a pymongo write result like the Node driver's result object."""
    if isinstance(result, InsertOneResult):
        return {"acknowledged": result.acknowledged, "insertedId": result.inserted_id}
    if isinstance(result, InsertManyResult):
        return {
            "acknowledged": result.acknowledged,
            "insertedCount": len(result.inserted_ids),
            "insertedIds": list(result.inserted_ids),
        }
    if isinstance(result, UpdateResult):
        return {
            "acknowledged": result.acknowledged,
            "matchedCount": result.matched_count,
            "modifiedCount": result.modified_count,
            "upsertedId": result.upserted_id,
        }
    if isinstance(result, DeleteResult):
        return {"acknowledged": result.acknowledged, "deletedCount": result.deleted_count}
    if isinstance(result, BulkWriteResult):
        return {
            "acknowledged": result.acknowledged,
            "insertedCount": result.inserted_count,
            "matchedCount": result.matched_count,
            "modifiedCount": result.modified_count,
            "deletedCount": result.deleted_count,
            "upsertedCount": result.upserted_count,
            "upsertedIds": {str(k): v for k, v in (result.upserted_ids or {}).items()},
        }
    return None


def normalize_result(value: Any) -> Any:
    """Replace values json_util cannot encode with encodable equivalents."""
    shaped = write_result_to_dict(value)
    if shaped is not None:
        return normalize_result(shaped)
    if isinstance(value, dict):
        return {str(k): normalize_result(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [normalize_result(v) for v in value]
    if isinstance(value, _BSON_SCALARS):
        return value
    try:
        json_util.dumps(value, json_options=RELAXED_OPTIONS)
    except TypeError:
        return repr(value)
    return value


def to_json_compatible(value: Any) -> Any:
    """Render a query result as plain JSON-compatible Python data."""
    return json.loads(json_util.dumps(normalize_result(value), json_options=RELAXED_OPTIONS))


def documents_affected(result: Any) -> int:
    """Rough count of documents a result touched or returned."""
    shaped = write_result_to_dict(result)
    if shaped is not None:
        result = shaped
    if isinstance(result, (list, tuple)):
        return len(result)
    if isinstance(result, dict):
        for key in ("modifiedCount", "deletedCount", "insertedCount"):
            if result.get(key):
                return int(result[key])
        return 1 if result.get("acknowledged") else 0
    return 1 if result else 0
