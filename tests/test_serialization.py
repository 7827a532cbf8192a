"""
Tests for result serialization.
"""

from datetime import datetime, timezone

from bson import Decimal128, ObjectId
from pymongo.results import DeleteResult, InsertManyResult, InsertOneResult, UpdateResult

from mongosnap.utils.serialization import (
    documents_affected,
    normalize_result,
    to_json_compatible,
    write_result_to_dict,
)

OID = ObjectId("507f1f77bcf86cd799439011")


class TestToJsonCompatible:

    def test_object_id(self):
        assert to_json_compatible({"_id": OID}) == {"_id": {"$oid": "507f1f77bcf86cd799439011"}}

    def test_datetime(self):
        value = to_json_compatible({"at": datetime(2024, 1, 1, tzinfo=timezone.utc)})

        assert value == {"at": {"$date": "2024-01-01T00:00:00Z"}}

    def test_decimal(self):
        assert to_json_compatible(Decimal128("1.5")) == {"$numberDecimal": "1.5"}

    def test_plain_values(self):
        assert to_json_compatible([1, "a", None, True, 2.5]) == [1, "a", None, True, 2.5]

    def test_insert_one_result(self):
        value = to_json_compatible(InsertOneResult(OID, True))

        assert value == {"acknowledged": True, "insertedId": {"$oid": "507f1f77bcf86cd799439011"}}

    def test_unencodable_value_falls_back_to_repr(self):
        class Opaque:
            def __repr__(self):
                return "<opaque>"

        assert to_json_compatible({"x": Opaque()}) == {"x": "<opaque>"}


class TestWriteResults:

    def test_update_result(self):
        result = UpdateResult({"n": 2, "nModified": 1}, True)

        assert write_result_to_dict(result) == {
            "acknowledged": True,
            "matchedCount": 2,
            "modifiedCount": 1,
            "upsertedId": None,
        }

    def test_delete_result(self):
        assert write_result_to_dict(DeleteResult({"n": 3}, True)) == {
            "acknowledged": True,
            "deletedCount": 3,
        }

    def test_insert_many_result(self):
        result = write_result_to_dict(InsertManyResult([1, 2], True))

        assert result["insertedCount"] == 2
        assert result["insertedIds"] == [1, 2]

    def test_other_values(self):
        assert write_result_to_dict({"a": 1}) is None

    def test_normalize_tuples(self):
        assert normalize_result({"tags": ("a", "b")}) == {"tags": ["a", "b"]}


class TestDocumentsAffected:

    def test_list(self):
        assert documents_affected([{}, {}, {}]) == 3

    def test_write_results(self):
        assert documents_affected(UpdateResult({"n": 2, "nModified": 2}, True)) == 2
        assert documents_affected(DeleteResult({"n": 4}, True)) == 4
        assert documents_affected(InsertOneResult(OID, True)) == 1

    def test_scalars(self):
        assert documents_affected(5) == 1
        assert documents_affected(None) == 0
        assert documents_affected({"ok": 1}) == 0
