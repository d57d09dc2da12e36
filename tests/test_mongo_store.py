from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from conftest import FIXED_NOW, raw_doc
from todo_service.db import TODO_INDEXES, MongoSession, MongoStore
from todo_service.errors import DocumentValidationError, StoreError, TransactionStateError
from todo_service.models import BulkUpdateResult, GroupCount
from todo_service.schemas import TODO_SCHEMA
from todo_service.store import InMemoryStore

ID_A = "507f1f77bcf86cd799439011"
ID_B = "507f1f77bcf86cd799439012"


def make_cursor(rows):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=rows)
    return cursor


@pytest.fixture
def collection():
    coll = MagicMock()
    coll.full_name = "todos.todos"
    for name in (
        "insert_one",
        "count_documents",
        "find_one",
        "find_one_and_update",
        "find_one_and_delete",
        "update_many",
        "delete_many",
        "create_indexes",
    ):
        setattr(coll, name, AsyncMock())
    return coll


@pytest.fixture
def client(collection):
    c = MagicMock()
    c.__getitem__.return_value.__getitem__.return_value = collection
    c.admin.command = AsyncMock(return_value={"ok": 1})
    return c


@pytest.fixture
def mongo(client):
    return MongoStore(client, "todos", "todos", schema=TODO_SCHEMA)


def native_session():
    native = MagicMock()
    native.in_transaction = False
    native.commit_transaction = AsyncMock()
    native.abort_transaction = AsyncMock()
    native.end_session = AsyncMock()
    return native


class TestWrites:
    async def test_insert_returns_document_with_assigned_id(self, mongo, collection):
        oid = ObjectId(ID_A)
        collection.insert_one.return_value = SimpleNamespace(inserted_id=oid)

        stored = await mongo.insert(raw_doc(title="Stored"))
        assert stored["_id"] == oid
        assert stored["title"] == "Stored"
        sent = collection.insert_one.await_args.args[0]
        assert "_id" not in sent or sent["_id"] == oid

    async def test_schema_violation_never_reaches_the_driver(self, mongo, collection):
        with pytest.raises(DocumentValidationError):
            await mongo.insert(raw_doc(title=""))
        with pytest.raises(DocumentValidationError):
            await mongo.update_one_by_id(ID_A, {"completed": "yes"})
        with pytest.raises(DocumentValidationError):
            await mongo.update_many([ID_A], {"created_at": FIXED_NOW})

        collection.insert_one.assert_not_awaited()
        collection.find_one_and_update.assert_not_awaited()
        collection.update_many.assert_not_awaited()

    async def test_update_one_wraps_patch_in_set(self, mongo, collection):
        collection.find_one_and_update.return_value = {"_id": ObjectId(ID_A), "title": "New"}

        doc = await mongo.update_one_by_id(ID_A.upper(), {"title": "New", "updated_at": FIXED_NOW})
        assert doc["title"] == "New"
        collection.find_one_and_update.assert_awaited_once_with(
            {"_id": ObjectId(ID_A)},
            {"$set": {"title": "New", "updated_at": FIXED_NOW}},
            return_document=ReturnDocument.AFTER,
            session=None,
        )

    async def test_update_many_sends_object_ids(self, mongo, collection):
        collection.update_many.return_value = SimpleNamespace(matched_count=2, modified_count=1)

        result = await mongo.update_many([ID_A, ID_B], {"completed": True})
        assert result == BulkUpdateResult(matched_count=2, modified_count=1)
        flt, update = collection.update_many.await_args.args
        assert flt == {"_id": {"$in": [ObjectId(ID_A), ObjectId(ID_B)]}}
        assert update == {"$set": {"completed": True}}

    async def test_delete_many_sends_object_ids(self, mongo, collection):
        collection.delete_many.return_value = SimpleNamespace(deleted_count=1)

        assert await mongo.delete_many([ID_A]) == 1
        assert collection.delete_many.await_args.args[0] == {"_id": {"$in": [ObjectId(ID_A)]}}

    async def test_point_lookups_convert_ids(self, mongo, collection):
        collection.find_one.return_value = None
        collection.find_one_and_delete.return_value = None

        assert await mongo.find_one_by_id(ID_A) is None
        assert await mongo.delete_one_by_id(ID_A) is None
        assert collection.find_one.await_args.args[0] == {"_id": ObjectId(ID_A)}
        assert collection.find_one_and_delete.await_args.args[0] == {"_id": ObjectId(ID_A)}


class TestReads:
    async def test_find_many_applies_sort_skip_limit(self, mongo, collection):
        cursor = make_cursor([{"_id": ObjectId(ID_A)}])
        collection.find.return_value = cursor

        docs = await mongo.find_many({"completed": False}, sort=[("created_at", -1), ("_id", -1)], skip=5, limit=5)
        assert docs == [{"_id": ObjectId(ID_A)}]
        collection.find.assert_called_once_with({"completed": False}, session=None)
        cursor.sort.assert_called_once_with([("created_at", -1), ("_id", -1)])
        cursor.skip.assert_called_once_with(5)
        cursor.limit.assert_called_once_with(5)

    async def test_find_many_without_limit_reads_everything(self, mongo, collection):
        cursor = make_cursor([])
        collection.find.return_value = cursor

        await mongo.find_many()
        cursor.skip.assert_not_called()
        cursor.limit.assert_not_called()
        cursor.to_list.assert_awaited_once_with(length=None)

    async def test_count(self, mongo, collection):
        collection.count_documents.return_value = 3
        assert await mongo.count() == 3
        collection.count_documents.assert_awaited_once_with({}, session=None)

    async def test_group_by_day_pipeline(self, mongo, collection):
        collection.aggregate.return_value = make_cursor([{"_id": "2025-03-12", "count": 2}])
        window = {"$gte": FIXED_NOW, "$lte": FIXED_NOW}

        rows = await mongo.aggregate_group_count("created_at", {"created_at": window}, day_timezone="Europe/Paris")
        assert rows == [GroupCount("2025-03-12", 2)]
        pipeline = collection.aggregate.call_args.args[0]
        assert pipeline == [
            {"$match": {"created_at": window}},
            {
                "$group": {
                    "_id": {
                        "$dateToString": {"format": "%Y-%m-%d", "date": "$created_at", "timezone": "Europe/Paris"}
                    },
                    "count": {"$sum": 1},
                }
            },
            {"$sort": {"_id": 1}},
        ]

    async def test_group_by_field_pipeline(self, mongo, collection):
        collection.aggregate.return_value = make_cursor([{"_id": "high", "count": 1}])

        assert await mongo.aggregate_group_count("priority") == [GroupCount("high", 1)]
        assert collection.aggregate.call_args.args[0] == [
            {"$group": {"_id": "$priority", "count": {"$sum": 1}}},
            {"$sort": {"_id": 1}},
        ]


class TestSessions:
    async def test_begin_session_forwards_native_session(self, mongo, client, collection):
        native = native_session()
        client.start_session = AsyncMock(return_value=native)
        collection.count_documents.return_value = 0

        session = await mongo.begin_session()
        assert isinstance(session, MongoSession)
        await mongo.count({}, session=session)
        collection.count_documents.assert_awaited_once_with({}, session=native)

    async def test_lifecycle_delegates_to_driver(self):
        native = native_session()
        session = MongoSession(native)

        session.start_transaction()
        await session.commit()
        await session.abort()
        native.start_transaction.assert_called_once_with()
        native.commit_transaction.assert_awaited_once()
        native.abort_transaction.assert_awaited_once()

    async def test_end_is_idempotent(self):
        native = native_session()
        session = MongoSession(native)

        await session.end()
        await session.end()
        native.end_session.assert_awaited_once()
        with pytest.raises(TransactionStateError):
            session.start_transaction()

    async def test_foreign_session_is_rejected(self, mongo, collection):
        foreign = await InMemoryStore().begin_session()
        with pytest.raises(StoreError):
            await mongo.count({}, session=foreign)
        collection.count_documents.assert_not_awaited()


class TestAdmin:
    async def test_ping(self, mongo, client):
        assert await mongo.ping() is True
        client.admin.command.side_effect = PyMongoError("down")
        assert await mongo.ping() is False

    async def test_ensure_indexes(self, mongo, collection):
        collection.create_indexes.return_value = ["completed_1", "priority_1", "created_at_-1", "title_text_description_text"]

        names = await mongo.ensure_indexes()
        assert len(names) == 4
        collection.create_indexes.assert_awaited_once_with(TODO_INDEXES)

    def test_close(self, mongo, client):
        mongo.close()
        client.close.assert_called_once_with()
