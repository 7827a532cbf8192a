"""
Execution context builder.

Wraps one motor database handle in the ``db`` capability that query code
sees. Every collection access builds a fresh ``CollectionOperations``; no
wrapper is cached or shared between executions.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any

from pymongo import DeleteMany, DeleteOne, InsertOne, ReplaceOne, ReturnDocument, UpdateMany, UpdateOne

from mongosnap.sandbox.errors import InvalidArgumentError
from mongosnap.sandbox.utilities import (
    Date,
    ISODate,
    NumberDecimal,
    NumberInt,
    NumberLong,
    ObjectId,
)

# Driver-style option names that pymongo spells differently
_OPTION_ALIASES: dict[str, str] = {
    "returnDocument": "return_document",
    "returnNewDocument": "return_document",
    "returnOriginal": "return_document",
    "arrayFilters": "array_filters",
    "bypassDocumentValidation": "bypass_document_validation",
}

_FIND_OPTIONS = frozenset({
    "projection",
    "sort",
    "limit",
    "skip",
    "hint",
    "max_time_ms",
    "maxTimeMS",
    "batch_size",
    "batchSize",
    "collation",
    "comment",
    "allow_disk_use",
    "allowDiskUse",
})


def _write_options(fields: dict[str, Any]) -> dict[str, Any]:
    options = {}
    if "upsert" in fields:
        options["upsert"] = fields["upsert"]
    if "arrayFilters" in fields:
        options["array_filters"] = fields["arrayFilters"]
    return options


_BULK_OPERATIONS = {
    "insertOne": lambda fields: InsertOne(fields["document"]),
    "updateOne": lambda fields: UpdateOne(fields["filter"], fields["update"], **_write_options(fields)),
    "updateMany": lambda fields: UpdateMany(fields["filter"], fields["update"], **_write_options(fields)),
    "replaceOne": lambda fields: ReplaceOne(fields["filter"], fields["replacement"], **_write_options(fields)),
    "deleteOne": lambda fields: DeleteOne(fields["filter"]),
    "deleteMany": lambda fields: DeleteMany(fields["filter"]),
}


def _key_list(keys: Any) -> Any:
    if isinstance(keys, dict):
        return list(keys.items())
    return keys


def _return_document(key: str, value: Any) -> ReturnDocument:
    if key == "returnDocument":
        after = str(value).lower() == "after"
    elif key == "returnOriginal":
        after = not value
    else:
        after = bool(value)
    return ReturnDocument.AFTER if after else ReturnDocument.BEFORE


def _merge(options: dict[str, Any] | None, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Fold a positional driver-style ``options`` dict into keyword arguments."""
    if options is not None and not isinstance(options, dict):
        raise InvalidArgumentError(f"Options must be a dict, got {type(options).__name__}")

    merged: dict[str, Any] = {}
    for key, value in {**(options or {}), **kwargs}.items():
        name = _OPTION_ALIASES.get(key, key)
        if name == "return_document" and not isinstance(value, ReturnDocument):
            value = _return_document(key, value)
        elif name == "sort":
            value = _key_list(value)
        merged[name] = value
    return merged


def _split_projection(
    projection: dict[str, Any] | None, kwargs: dict[str, Any]
) -> tuple[dict[str, Any] | None, dict[str, Any]]:
    """The second ``find`` argument is a projection unless it only holds find options."""
    if isinstance(projection, dict) and projection and set(projection) <= _FIND_OPTIONS:
        return None, _merge(projection, kwargs)
    return projection, _merge(None, kwargs)


def _bulk_request(operation: Any) -> Any:
    if not isinstance(operation, dict):
        return operation
    if len(operation) != 1:
        raise InvalidArgumentError(f"Invalid bulk write operation: {operation}")
    name, fields = next(iter(operation.items()))
    build = _BULK_OPERATIONS.get(name)
    if build is None:
        raise InvalidArgumentError(f"Unsupported bulk write operation: {name}")
    try:
        return build(fields)
    except KeyError as exc:
        raise InvalidArgumentError(f"Bulk write {name} is missing {exc}") from None


async def _drain(cursor: Any) -> list[Any]:
    if inspect.isawaitable(cursor):
        cursor = await cursor
    return await cursor.to_list(None)


def _check_name(name: Any) -> str:
    if not isinstance(name, str):
        raise InvalidArgumentError("Collection name must be a string")
    return name


class CollectionOperations:
    """
    Async operations bound to one named collection.

    Methods use the shell's camelCase names; snake_case aliases are bound to
    the same functions. Cursor-returning calls are drained to lists.
    """

    def __init__(self, database: Any, name: str) -> None:
        self._database = database
        self._collection = database.get_collection(name)
        self.name = name

    def __repr__(self) -> str:
        return f"CollectionOperations({self.name!r})"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find(self, filter: dict | None = None, projection: Any = None, **kwargs: Any) -> list[Any]:
        projection, options = _split_projection(projection, kwargs)
        if projection is not None:
            options.setdefault("projection", projection)
        return await _drain(self._collection.find(filter or {}, **options))

    async def findOne(self, filter: dict | None = None, projection: Any = None, **kwargs: Any) -> Any:
        projection, options = _split_projection(projection, kwargs)
        if projection is not None:
            options.setdefault("projection", projection)
        return await self._collection.find_one(filter or {}, **options)

    async def countDocuments(self, filter: dict | None = None, options: dict | None = None, **kwargs: Any) -> int:
        return await self._collection.count_documents(filter or {}, **_merge(options, kwargs))

    async def estimatedDocumentCount(self, options: dict | None = None, **kwargs: Any) -> int:
        return await self._collection.estimated_document_count(**_merge(options, kwargs))

    async def distinct(self, key: str, filter: dict | None = None, options: dict | None = None, **kwargs: Any) -> list[Any]:
        return await self._collection.distinct(key, filter or {}, **_merge(options, kwargs))

    async def aggregate(self, pipeline: list | None = None, options: dict | None = None, **kwargs: Any) -> list[Any]:
        return await _drain(self._collection.aggregate(pipeline or [], **_merge(options, kwargs)))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insertOne(self, document: dict, options: dict | None = None, **kwargs: Any) -> Any:
        return await self._collection.insert_one(document, **_merge(options, kwargs))

    async def insertMany(self, documents: list, options: dict | None = None, **kwargs: Any) -> Any:
        return await self._collection.insert_many(documents, **_merge(options, kwargs))

    async def updateOne(self, filter: dict, update: Any, options: dict | None = None, **kwargs: Any) -> Any:
        return await self._collection.update_one(filter, update, **_merge(options, kwargs))

    async def updateMany(self, filter: dict, update: Any, options: dict | None = None, **kwargs: Any) -> Any:
        return await self._collection.update_many(filter, update, **_merge(options, kwargs))

    async def replaceOne(self, filter: dict, replacement: dict, options: dict | None = None, **kwargs: Any) -> Any:
        return await self._collection.replace_one(filter, replacement, **_merge(options, kwargs))

    async def deleteOne(self, filter: dict, options: dict | None = None, **kwargs: Any) -> Any:
        return await self._collection.delete_one(filter, **_merge(options, kwargs))

    async def deleteMany(self, filter: dict, options: dict | None = None, **kwargs: Any) -> Any:
        return await self._collection.delete_many(filter, **_merge(options, kwargs))

    # ------------------------------------------------------------------
    # Find-and-modify
    # ------------------------------------------------------------------

    async def findOneAndUpdate(self, filter: dict, update: Any, options: dict | None = None, **kwargs: Any) -> Any:
        return await self._collection.find_one_and_update(filter, update, **_merge(options, kwargs))

    async def findOneAndDelete(self, filter: dict, options: dict | None = None, **kwargs: Any) -> Any:
        return await self._collection.find_one_and_delete(filter, **_merge(options, kwargs))

    async def findOneAndReplace(self, filter: dict, replacement: dict, options: dict | None = None, **kwargs: Any) -> Any:
        return await self._collection.find_one_and_replace(filter, replacement, **_merge(options, kwargs))

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    async def createIndex(self, keys: Any, options: dict | None = None, **kwargs: Any) -> str:
        return await self._collection.create_index(_key_list(keys), **_merge(options, kwargs))

    async def listIndexes(self) -> list[Any]:
        return await _drain(self._collection.list_indexes())

    async def dropIndex(self, index: Any) -> Any:
        return await self._collection.drop_index(_key_list(index))

    async def dropIndexes(self) -> Any:
        return await self._collection.drop_indexes()

    async def bulkWrite(self, operations: list, options: dict | None = None, **kwargs: Any) -> Any:
        requests = [_bulk_request(operation) for operation in operations]
        return await self._collection.bulk_write(requests, **_merge(options, kwargs))

    # ------------------------------------------------------------------
    # Collection management
    # ------------------------------------------------------------------

    async def drop(self) -> Any:
        return await self._collection.drop()

    async def rename(self, new_name: str, options: dict | None = None, **kwargs: Any) -> Any:
        return await self._collection.rename(_check_name(new_name), **_merge(options, kwargs))

    async def stats(self) -> dict[str, Any]:
        return await self._database.command({"collStats": self.name})

    async def validate(self, options: dict | None = None) -> dict[str, Any]:
        return await self._database.command({"validate": self.name, **(options or {})})

    # snake_case aliases
    find_one = findOne
    count_documents = countDocuments
    estimated_document_count = estimatedDocumentCount
    insert_one = insertOne
    insert_many = insertMany
    update_one = updateOne
    update_many = updateMany
    replace_one = replaceOne
    delete_one = deleteOne
    delete_many = deleteMany
    find_one_and_update = findOneAndUpdate
    find_one_and_delete = findOneAndDelete
    find_one_and_replace = findOneAndReplace
    create_index = createIndex
    list_indexes = listIndexes
    drop_index = dropIndex
    drop_indexes = dropIndexes
    bulk_write = bulkWrite


class AdminOperations:
    """Server-level commands reachable through ``db.admin()``."""

    def __init__(self, admin_database: Any) -> None:
        self._admin = admin_database

    async def ping(self) -> dict[str, Any]:
        return await self._admin.command("ping")

    async def command(self, command: Any) -> dict[str, Any]:
        return await self._admin.command(command)

    async def listDatabases(self) -> dict[str, Any]:
        return await self._admin.command("listDatabases")

    async def serverStatus(self) -> dict[str, Any]:
        return await self._admin.command({"serverStatus": 1})

    list_databases = listDatabases
    server_status = serverStatus


class DatabaseProxy:
    """
    The ``db`` object seen by query code.

    ``db.users``, ``db.getCollection("users")`` and ``db.collection("users")``
    are equivalent. Collections whose names clash with a method here must go
    through ``getCollection``.
    """

    def __init__(self, database: Any) -> None:
        self._database = database

    def __getattr__(self, name: str) -> CollectionOperations:
        if name.startswith("_"):
            raise AttributeError(name)
        return CollectionOperations(self._database, name)

    def __repr__(self) -> str:
        return f"DatabaseProxy({getattr(self._database, 'name', '?')!r})"

    def getCollection(self, name: Any) -> CollectionOperations:
        return CollectionOperations(self._database, _check_name(name))

    collection = getCollection
    get_collection = getCollection

    # ------------------------------------------------------------------
    # Database-level operations
    # ------------------------------------------------------------------

    async def dropDatabase(self) -> dict[str, Any]:
        return await self._database.command({"dropDatabase": 1})

    async def createCollection(self, name: Any, options: dict | None = None, **kwargs: Any) -> CollectionOperations:
        await self._database.create_collection(_check_name(name), **_merge(options, kwargs))
        return CollectionOperations(self._database, name)

    async def runCommand(self, command: Any) -> dict[str, Any]:
        return await self._database.command(command)

    command = runCommand

    async def listCollections(self, filter: dict | None = None) -> list[dict[str, Any]]:
        if filter:
            return await _drain(self._database.list_collections(filter=filter))
        return await _drain(self._database.list_collections())

    async def stats(self) -> dict[str, Any]:
        return await self._database.command("dbstats")

    def admin(self) -> AdminOperations:
        return AdminOperations(self._database.client.admin)

    drop_database = dropDatabase
    create_collection = createCollection
    run_command = runCommand
    list_collections = listCollections


@dataclass
class ExecutionContext:
    """Allow-listed bindings for one execution; never shared between calls."""

    db: DatabaseProxy
    bindings: dict[str, Any] = field(default_factory=dict)


def build_execution_context(database: Any) -> ExecutionContext:
    """Bind the ``db`` capability and the shell constructors to ``database``."""
    if database is None:
        raise InvalidArgumentError("A database handle is required")
    if not callable(getattr(database, "get_collection", None)):
        raise InvalidArgumentError("Database handle must provide get_collection()")

    db = DatabaseProxy(database)
    return ExecutionContext(
        db=db,
        bindings={
            "db": db,
            "ObjectId": ObjectId,
            "Date": Date,
            "ISODate": ISODate,
            "NumberLong": NumberLong,
            "NumberInt": NumberInt,
            "NumberDecimal": NumberDecimal,
        },
    )
