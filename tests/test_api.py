"""
Tests for the HTTP API.

Services are placed on ``app.state`` directly; the registry builds fake
clients whose ``get_database`` returns the shared ``database`` fixture.
"""

import asyncio

import pytest
from bson import ObjectId
from fastapi import FastAPI
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from mongosnap.api import connections_router, queries_router
from mongosnap.config import ConnectionConfig, OpenAIConfig, SandboxConfig
from mongosnap.connections import ConnectionRegistry
from mongosnap.generation import QueryGenerator
from mongosnap.sandbox import QueryExecutor
from mongosnap.services import ConcurrencyLimitExceeded, UserConcurrencyLimiter

from tests.conftest import make_client, make_cursor

USER = {"X-User-Id": "user-1"}
URI = "mongodb://alice:pw@db.example.net:27017/shop"

@pytest.fixture
def client_factory(database):
    def factory(uri, **kwargs):
        client = MagicMock(name="client")
        client.admin.command = AsyncMock(return_value={"ok": 1})
        client.close = MagicMock(return_value=None)
        client.get_database = MagicMock(return_value=database)
        return client

    return factory

@pytest.fixture
def app(client_factory):
    app = FastAPI()
    app.include_router(connections_router, prefix="/api/v1")
    app.include_router(queries_router, prefix="/api/v1")
    app.state.registry = ConnectionRegistry(ConnectionConfig(), client_factory=client_factory)
    app.state.executor = QueryExecutor(SandboxConfig(default_timeout_ms=2000, max_query_length=200))
    app.state.generator = QueryGenerator(OpenAIConfig(), client=make_client('db.users.find({"active": True})'))
    app.state.limiter = UserConcurrencyLimiter(3)
    return app

@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client

@pytest.fixture
def connected(client):
    response = client.post(
        "/api/v1/connections",
        json={"connection_id": "c1", "uri": URI, "nickname": "shop"},
        headers=USER,
    )
    assert response.status_code == 200
    return "c1"

def execute(client, query, connection_id="c1", **extra):
    return client.post(
        f"/api/v1/connections/{connection_id}/execute",
        json={"query": query, **extra},
        headers=USER,
    )

class TestQueries:

    def test_metadata(self, client):
        response = client.post("/api/v1/queries/metadata", json={"query": "db.users.find({})"})

        assert response.status_code == 200
        assert response.json()["collections"] == ["users"]
        assert response.json()["primary_operation"] == "find"

    def test_validate(self, client):
        response = client.post("/api/v1/queries/validate", json={"query": "eval('1')"})

        assert response.status_code == 200
        assert response.json()["is_valid"] is False
        assert response.json()["violations"]

    def test_blank_query(self, client):
        response = client.post("/api/v1/queries/validate", json={"query": "   "})

        assert response.status_code == 422

class TestConnections:

    def test_requires_user(self, client):
        response = client.get("/api/v1/connections/stats")

        assert response.status_code == 401

    def test_connect(self, client):
        response = client.post(
            "/api/v1/connections",
            json={"connection_id": "c1", "uri": URI},
            headers=USER,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["host"] == "db.example.net:27017"
        assert body["database_name"] == "shop"
        assert "pw" not in body["masked_uri"]

    def test_connect_rejects_bad_scheme(self, client):
        response = client.post(
            "/api/v1/connections",
            json={"connection_id": "c1", "uri": "postgres://x"},
            headers=USER,
        )

        assert response.status_code == 422

    def test_connect_failure(self, client, app):
        def unreachable(uri, **kwargs):
            client = MagicMock(name="client")
            client.admin.command = AsyncMock(side_effect=RuntimeError("no servers"))
            client.close = MagicMock(return_value=None)
            return client

        app.state.registry = ConnectionRegistry(ConnectionConfig(), client_factory=unreachable)

        response = client.post(
            "/api/v1/connections",
            json={"connection_id": "c1", "uri": URI},
            headers=USER,
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "CONNECTION_FAILED"

    def test_status_and_disconnect(self, client, connected):
        status = client.get("/api/v1/connections/c1/status", headers=USER).json()
        assert status["is_connected"] is True
        assert status["is_alive"] is True

        response = client.post("/api/v1/connections/c1/disconnect", headers=USER)
        assert response.json() == {"connection_id": "c1", "disconnected": True}

        status = client.get("/api/v1/connections/c1/status", headers=USER).json()
        assert status["is_connected"] is False

    def test_stats(self, client, connected):
        response = client.get("/api/v1/connections/stats", headers=USER)

        assert response.json()["total_connections"] == 1

    def test_stats_are_scoped_to_caller(self, client, connected):
        other = {"X-User-Id": "user-2"}

        response = client.get("/api/v1/connections/stats", headers=other)

        assert response.json() == {
            "total_connections": 0,
            "active_connections": 0,
            "stale_connections": 0,
            "users": 0,
        }

    def test_schema(self, client, connected, database, collections):
        database.list_collections.return_value = make_cursor([{"name": "users"}])
        collections["users"].estimated_document_count.return_value = 5

        response = client.get("/api/v1/connections/c1/schema", headers=USER)

        assert response.status_code == 200
        assert response.json()["database_name"] == "testdb"
        assert response.json()["collections"][0]["name"] == "users"

    def test_schema_not_connected(self, client):
        response = client.get("/api/v1/connections/c1/schema", headers=USER)

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_CONNECTED"

class TestExecute:

    def test_success(self, client, connected, collections):
        oid = ObjectId("507f1f77bcf86cd799439011")
        collections["users"].find.return_value = make_cursor([{"_id": oid, "name": "Ada"}])

        response = execute(client, 'db.users.find({"name": "Ada"})')

        body = response.json()
        assert response.status_code == 200
        assert body["result"] == [{"_id": {"$oid": "507f1f77bcf86cd799439011"}, "name": "Ada"}]
        assert body["metadata"]["primary_collection"] == "users"
        assert body["documents_affected"] == 1

    def test_forbidden_operation(self, client, connected, collections):
        response = execute(client, "db.users.drop()")

        assert response.status_code == 403
        assert response.json()["detail"]["details"] == {"operations": ["drop"]}
        collections["users"].drop.assert_not_awaited()

    @pytest.mark.parametrize("query, operation", [
        ('db.runCommand({"dropDatabase": 1})', "dropDatabase"),
        ('db.command({"drop": "users"})', "drop"),
        ("f = db.users.drop\nawait f()", "drop"),
    ])
    def test_forbidden_operation_indirect(self, client, connected, database, collections, query, operation):
        response = execute(client, query)

        assert response.status_code == 403
        assert response.json()["detail"]["details"] == {"operations": [operation]}
        database.command.assert_not_awaited()
        collections["users"].drop.assert_not_awaited()

    def test_security_violation(self, client, connected):
        response = execute(client, "process.exit(1)")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "SECURITY_VIOLATION"

    def test_compiler_violation(self, client, connected):
        response = execute(client, "x = db.users\nx.gi_frame")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "SECURITY_VIOLATION"

    def test_query_too_long(self, client, connected):
        response = execute(client, "db.users.find({})" + " " * 300 + "\n1")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "QUERY_TOO_LONG"

    def test_not_connected(self, client):
        response = execute(client, "db.users.find({})", connection_id="nope")

        assert response.status_code == 404

    def test_query_error(self, client, connected, collections):
        collections["users"].find_one.side_effect = RuntimeError("Database connection failed")

        response = execute(client, "db.users.findOne({})")

        detail = response.json()["detail"]
        assert response.status_code == 422
        assert detail["error"] == "Database connection failed"
        assert detail["details"] == {"name": "RuntimeError"}

    def test_timeout(self, client, connected, collections):
        async def slow(*args, **kwargs):
            await asyncio.sleep(5)

        collections["users"].find_one.side_effect = slow

        response = execute(client, "db.users.findOne({})", timeout_ms=100)

        assert response.status_code == 504
        assert response.json()["detail"]["error"] == "Query execution timed out after 100ms"

    def test_concurrency_limit(self, client, connected, app):
        limiter = MagicMock()
        limiter.slot.side_effect = ConcurrencyLimitExceeded("user-1", 3)
        app.state.limiter = limiter

        response = execute(client, "db.users.find({})")

        assert response.status_code == 429

class TestGenerate:

    def test_generate(self, client, connected):
        response = client.post(
            "/api/v1/connections/c1/generate",
            json={"natural_language": "active users"},
            headers=USER,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["query"] == 'db.users.find({"active": True})'
        assert body["validation"]["is_valid"] is True
        assert body["metadata"]["collections"] == ["users"]
        assert body["explanation"] is None

    def test_generation_unavailable(self, client, connected, app):
        app.state.generator = QueryGenerator(OpenAIConfig(api_key=""))

        response = client.post(
            "/api/v1/connections/c1/generate",
            json={"natural_language": "active users"},
            headers=USER,
        )

        assert response.status_code == 503

def test_health():
    from mongosnap.main import app

    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["connections"] is None
