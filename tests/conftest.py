"""
Shared fixtures.

The motor database handle is replaced by ``MagicMock``/``AsyncMock`` fakes:
cursor-returning methods are plain mocks whose ``to_list`` is async, every
other collection method is an ``AsyncMock``.
"""

from collections import defaultdict
from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock

ASYNC_COLLECTION_METHODS = (
    "find_one",
    "count_documents",
    "estimated_document_count",
    "distinct",
    "insert_one",
    "insert_many",
    "update_one",
    "update_many",
    "replace_one",
    "delete_one",
    "delete_many",
    "find_one_and_update",
    "find_one_and_delete",
    "find_one_and_replace",
    "create_index",
    "drop_index",
    "drop_indexes",
    "bulk_write",
    "drop",
    "rename",
)


def make_cursor(documents=None) -> MagicMock:
    cursor = MagicMock(name="cursor")
    cursor.to_list = AsyncMock(return_value=list(documents or []))
    return cursor


def make_collection() -> MagicMock:
    collection = MagicMock(name="collection")
    for method in ASYNC_COLLECTION_METHODS:
        setattr(collection, method, AsyncMock(name=method))
    collection.find = MagicMock(name="find", return_value=make_cursor())
    collection.aggregate = MagicMock(name="aggregate", return_value=make_cursor())
    collection.list_indexes = MagicMock(name="list_indexes", return_value=make_cursor())
    return collection


@pytest.fixture
def collections() -> defaultdict:
    """Fake collections by name, created on first access."""
    return defaultdict(make_collection)


@pytest.fixture
def database(collections) -> MagicMock:
    db = MagicMock(name="database")
    db.name = "testdb"
    db.get_collection = MagicMock(side_effect=lambda name: collections[name])
    db.command = AsyncMock(return_value={"ok": 1})
    db.create_collection = AsyncMock()
    db.list_collections = MagicMock(return_value=make_cursor())
    db.client.admin.command = AsyncMock(return_value={"ok": 1})
    return db


def completion(content) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def make_client(content="db.users.find({})") -> MagicMock:
    """Fake ``AsyncOpenAI`` whose chat completion replies with ``content``."""
    client = MagicMock(name="openai")
    client.chat.completions.create = AsyncMock(return_value=completion(content))
    return client
