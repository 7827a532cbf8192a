"""
Tests for query metadata extraction.

The extractor is a regex heuristic, not a parser; the last tests pin down
where it knowingly over- and under-matches.
"""

import pytest

from mongosnap.sandbox.metadata import extract_metadata, find_forbidden_operations
from mongosnap.sandbox.models import UNKNOWN


class TestExtractMetadata:

    def test_single_find(self):
        meta = extract_metadata("db.users.find({})")

        assert meta.collections == {"users"}
        assert meta.operations == {"find"}
        assert meta.primary_collection == "users"
        assert meta.primary_operation == "find"
        assert meta.has_multiple_collections is False
        assert meta.has_multiple_operations is False

    def test_multiple_collections(self):
        meta = extract_metadata(
            'db.users.findOne({}); db.orders.updateMany({}, {"$set": {"a": 1}})'
        )

        assert meta.collections == {"users", "orders"}
        assert meta.operations == {"findOne", "updateMany"}
        assert meta.has_multiple_collections is True
        assert meta.has_multiple_operations is True
        assert meta.primary_collection == "users"
        assert meta.primary_operation == "findOne"

    def test_access_styles_are_equivalent(self):
        direct = extract_metadata("db.x.find({})")
        single = extract_metadata("db.getCollection('x').find({})")
        double = extract_metadata('db.getCollection("x").find({})')
        method = extract_metadata("db.collection(`x`).find({})")

        for meta in (direct, single, double, method):
            assert meta.collections == {"x"}
            assert meta.operations == {"find"}

    def test_dotted_collection_name(self):
        meta = extract_metadata('db.getCollection("user.profiles").countDocuments({})')

        assert meta.collections == {"user.profiles"}
        assert meta.operations == {"countDocuments"}

    def test_database_level_operation(self):
        meta = extract_metadata('db.runCommand({"ping": 1})')

        assert meta.collections == frozenset()
        assert meta.operations == {"runCommand"}
        assert meta.primary_collection == UNKNOWN
        assert meta.primary_operation == "runCommand"

    def test_collection_accessors_are_not_operations(self):
        meta = extract_metadata('db.getCollection("a").find({})')

        assert "getCollection" not in meta.operations

    def test_snake_case_operation(self):
        meta = extract_metadata("db.users.find_one({})")

        assert meta.operations == {"find_one"}

    def test_nested_await(self):
        meta = extract_metadata(
            'db.orders.find({"userId": (await db.users.findOne({"email": "a@b.c"}))["_id"]})'
        )

        assert meta.collections == {"orders", "users"}
        assert meta.operations == {"find", "findOne"}

    def test_no_matches(self):
        meta = extract_metadata("1 + 1")

        assert meta.collections == frozenset()
        assert meta.operations == frozenset()
        assert meta.primary_collection == UNKNOWN
        assert meta.primary_operation == UNKNOWN

    def test_deterministic(self):
        query = 'db.a.find({}); db.b.aggregate([]); db.getCollection("c").drop()'

        assert extract_metadata(query) == extract_metadata(query)
        assert extract_metadata(query).to_dict() == extract_metadata(query).to_dict()

    def test_to_dict_sorts_sets(self):
        data = extract_metadata("db.b.find({}); db.a.insertOne({})").to_dict()

        assert data["collections"] == ["a", "b"]
        assert data["operations"] == ["find", "insertOne"]
        assert data["primary_collection"] == "b"

    def test_matches_inside_string_literals(self):
        meta = extract_metadata('db.logs.insertOne({"note": "db.secrets.find()"})')

        assert meta.collections == {"logs", "secrets"}

    def test_misses_dynamic_collection_names(self):
        meta = extract_metadata('name = "users"\ndb.getCollection(name).find({})')

        assert meta.collections == frozenset()


class TestForbiddenOperations:

    def test_detects_drop(self):
        assert find_forbidden_operations("db.users.drop()", ["drop"]) == ["drop"]

    def test_drop_index_is_not_drop(self):
        assert find_forbidden_operations('db.users.dropIndex("a_1")', ["drop"]) == []

    def test_snake_case_alias(self):
        found = find_forbidden_operations("db.drop_database()", ["dropDatabase", "drop", "remove"])

        assert found == ["dropDatabase"]

    def test_multiple(self):
        query = 'db.a.remove({}); db.dropDatabase()'

        assert find_forbidden_operations(query, ["dropDatabase", "drop", "remove"]) == [
            "dropDatabase",
            "remove",
        ]

    def test_attribute_reference(self):
        assert find_forbidden_operations("f = db.users.drop\nawait f()", ["drop"]) == ["drop"]

    @pytest.mark.parametrize("query, expected", [
        ('db.runCommand({"dropDatabase": 1})', ["dropDatabase"]),
        ('db.command({"drop": "users"})', ["drop"]),
        ('db.run_command(dict(drop="users"))', ["drop"]),
        ('db.runCommand("dropDatabase")', ["dropDatabase"]),
        ('db.admin().command({"drop": "users"})', ["drop"]),
    ])
    def test_command_forms(self, query, expected):
        assert find_forbidden_operations(query, ["dropDatabase", "drop", "remove"]) == expected

    def test_values_are_not_commands(self):
        query = 'db.logs.find({"action": "drop"})'

        assert find_forbidden_operations(query, ["drop"]) == []

    def test_unparseable_query_falls_back_to_patterns(self):
        assert find_forbidden_operations("db.users.drop(", ["drop"]) == ["drop"]
        assert find_forbidden_operations('db.runCommand({"drop": "users"', ["drop"]) == ["drop"]
        assert find_forbidden_operations("db.users.dropIndex(", ["drop"]) == []
