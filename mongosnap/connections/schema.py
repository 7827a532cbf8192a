"""
Schema introspection for a connected database.

MongoDB has no fixed schema, so field types are inferred from sample
documents. The result feeds the query generator's prompt and the schema
endpoint.
"""

from __future__ import annotations

import inspect
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from bson import Binary, Decimal128, Int64, ObjectId, Regex, Timestamp
from structlog import get_logger

logger = get_logger()

_INT32_MAX = 2**31 - 1


@dataclass
class FieldInfo:
    name: str
    type: str


@dataclass
class IndexInfo:
    name: str
    key: dict[str, Any]
    unique: bool = False
    sparse: bool = False


@dataclass
class CollectionSchema:
    name: str
    type: str = "collection"
    count: int = 0
    indexes: list[IndexInfo] = field(default_factory=list)
    fields: list[FieldInfo] = field(default_factory=list)
    error: str | None = None

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


@dataclass
class DatabaseSchema:
    database_name: str
    collections: list[CollectionSchema] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def collection(self, name: str) -> CollectionSchema | None:
        return next((c for c in self.collections if c.name == name), None)


def bson_type_name(value: Any) -> str:
    """Name a value's BSON type the way ``$type`` does."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, Int64):
        return "long"
    if isinstance(value, int):
        return "int" if -_INT32_MAX - 1 <= value <= _INT32_MAX else "long"
    if isinstance(value, float):
        return "double"
    if isinstance(value, str):
        return "string"
    if isinstance(value, ObjectId):
        return "objectId"
    if isinstance(value, datetime):
        return "date"
    if isinstance(value, Decimal128):
        return "decimal"
    if isinstance(value, (bytes, Binary)):
        return "binData"
    if isinstance(value, (Regex, re.Pattern)):
        return "regex"
    if isinstance(value, Timestamp):
        return "timestamp"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "unknown"


def extract_fields(document: dict[str, Any], prefix: str = "") -> list[FieldInfo]:
    """Flatten a document into dotted field names with their BSON types."""
    fields: list[FieldInfo] = []
    for key, value in document.items():
        name = f"{prefix}{key}"
        fields.append(FieldInfo(name=name, type=bson_type_name(value)))
        if isinstance(value, dict):
            fields.extend(extract_fields(value, prefix=f"{name}."))
    return fields


def _merge_fields(samples: list[dict[str, Any]]) -> list[FieldInfo]:
    # first type seen wins; later samples only add new paths
    merged: dict[str, FieldInfo] = {}
    for document in samples:
        for info in extract_fields(document):
            merged.setdefault(info.name, info)
    return list(merged.values())


async def _to_list(cursor: Any) -> list[Any]:
    if inspect.isawaitable(cursor):
        cursor = await cursor
    return await cursor.to_list(None)


async def describe_collection(database: Any, name: str, kind: str = "collection", sample_size: int = 1) -> CollectionSchema:
    """Describe one collection; failures are recorded on the result, not raised."""
    collection = database.get_collection(name)
    schema = CollectionSchema(name=name, type=kind)
    try:
        schema.count = await collection.estimated_document_count()
        schema.indexes = [
            IndexInfo(
                name=index.get("name", ""),
                key=dict(index.get("key", {})),
                unique=bool(index.get("unique", False)),
                sparse=bool(index.get("sparse", False)),
            )
            for index in await _to_list(collection.list_indexes())
        ]
        if kind == "collection" and sample_size > 0:
            samples = await _to_list(collection.find({}, limit=sample_size))
            schema.fields = _merge_fields(samples)
    except Exception as e:
        logger.warning("Collection introspection failed", collection=name, error=str(e))
        schema.error = "Could not retrieve collection details"
    return schema


async def describe_database(database: Any, sample_size: int = 1) -> DatabaseSchema:
    """
    Describe every collection of ``database``.

    Args:
        database: Motor database handle.
        sample_size: Documents sampled per collection for field inference.

    Returns:
        ``DatabaseSchema`` with collections sorted by name.
    """
    listing = await _to_list(database.list_collections())
    result = DatabaseSchema(database_name=database.name)
    for entry in sorted(listing, key=lambda item: item["name"]):
        if entry["name"].startswith("system."):
            continue
        result.collections.append(
            await describe_collection(
                database,
                entry["name"],
                kind=entry.get("type", "collection"),
                sample_size=sample_size,
            )
        )
    logger.debug("Database described", database=result.database_name, collections=len(result.collections))
    return result
