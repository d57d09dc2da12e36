from datetime import datetime, timedelta, timezone

import pytest

from conftest import FIXED_NOW, raw_doc
from todo_service.errors import DocumentValidationError, StoreError, TransactionStateError
from todo_service.models import GroupCount
from todo_service.schemas import TODO_SCHEMA
from todo_service.store import InMemoryStore


@pytest.fixture
def plain():
    return InMemoryStore()


async def seed(store, *docs):
    return [await store.insert(d) for d in docs]


class TestQueries:
    async def test_equality_and_ranges(self, plain):
        await seed(plain, {"n": 1, "tag": "a"}, {"n": 2, "tag": "b"}, {"n": 3, "tag": "a"}, {"tag": "a"})

        assert await plain.count({"tag": "a"}) == 3
        assert await plain.count({"n": {"$gte": 2}}) == 2
        assert await plain.count({"n": {"$gt": 1, "$lt": 3}}) == 1
        assert await plain.count({"n": {"$lte": 2}, "tag": "a"}) == 1
        assert await plain.count({"n": {"$in": [1, 3]}}) == 2

    async def test_boolean_combinators(self, plain):
        await seed(plain, {"n": 1}, {"n": 2}, {"n": 3})

        assert await plain.count({"$or": [{"n": 1}, {"n": 3}]}) == 2
        assert await plain.count({"$and": [{"n": {"$gte": 2}}, {"n": {"$lte": 2}}]}) == 1

    async def test_regex_with_options(self, plain):
        await seed(plain, {"s": "Hello"}, {"s": "hello"}, {"s": None})

        assert await plain.count({"s": {"$regex": "^hel"}}) == 1
        assert await plain.count({"s": {"$regex": "^hel", "$options": "i"}}) == 2

    async def test_unsupported_operator(self, plain):
        await seed(plain, {"n": 1})
        with pytest.raises(StoreError):
            await plain.count({"n": {"$ne": 1}})
        with pytest.raises(StoreError):
            await plain.count({"$nor": [{"n": 1}]})

    async def test_multi_key_sort_with_missing_values(self, plain):
        await seed(plain, {"k": "b", "n": 1}, {"k": "a", "n": 2}, {"k": "a", "n": 1}, {"n": 9})

        asc = await plain.find_many(sort=[("k", 1), ("n", -1)])
        assert [(d.get("k"), d["n"]) for d in asc] == [(None, 9), ("a", 2), ("a", 1), ("b", 1)]

        desc = await plain.find_many(sort=[("k", -1)])
        assert desc[-1].get("k") is None

    async def test_skip_and_limit(self, plain):
        await seed(plain, *({"n": i} for i in range(5)))

        page = await plain.find_many(sort=[("n", 1)], skip=1, limit=2)
        assert [d["n"] for d in page] == [1, 2]
        assert len(await plain.find_many(limit=0)) == 5

    async def test_returned_documents_are_copies(self, plain):
        (doc,) = await seed(plain, {"tags": ["x"]})
        doc["tags"].append("y")
        assert (await plain.find_one_by_id(str(doc["_id"])))["tags"] == ["x"]


class TestWrites:
    async def test_update_many_counts_only_real_changes(self, plain):
        a, b = await seed(plain, {"done": False}, {"done": True})
        ids = [str(a["_id"]), str(b["_id"]), "507f1f77bcf86cd799439011"]

        result = await plain.update_many(ids, {"done": True})
        assert (result.matched_count, result.modified_count) == (2, 1)

    async def test_delete_many_ignores_duplicates(self, plain):
        a, _ = await seed(plain, {"n": 1}, {"n": 2})
        assert await plain.delete_many([str(a["_id"]), str(a["_id"])]) == 1
        assert await plain.count() == 1

    async def test_schema_rejects_bad_documents_and_patches(self):
        store = InMemoryStore(schema=TODO_SCHEMA)
        with pytest.raises(DocumentValidationError):
            await store.insert(raw_doc(title=""))
        with pytest.raises(DocumentValidationError):
            await store.insert({**raw_doc(), "owner": "someone"})

        doc = await store.insert(raw_doc())
        with pytest.raises(DocumentValidationError):
            await store.update_one_by_id(str(doc["_id"]), {"title": None})
        with pytest.raises(DocumentValidationError):
            await store.update_many([str(doc["_id"])], {"created_at": FIXED_NOW})


class TestAggregation:
    async def test_group_by_field(self, plain):
        await seed(plain, {"p": "high"}, {"p": "low"}, {"p": "high"}, {})

        rows = await plain.aggregate_group_count("p")
        assert rows == [GroupCount(None, 1), GroupCount("high", 2), GroupCount("low", 1)]

    async def test_group_by_day_in_timezone(self, plain):
        late = datetime(2025, 3, 11, 23, 30, tzinfo=timezone.utc)
        await seed(plain, {"at": late}, {"at": late + timedelta(hours=1)})

        assert await plain.aggregate_group_count("at", day_timezone="UTC") == [
            GroupCount("2025-03-11", 1),
            GroupCount("2025-03-12", 1),
        ]
        # Both fall on the 12th in Berlin (UTC+1 in March before DST).
        assert await plain.aggregate_group_count("at", day_timezone="Europe/Berlin") == [
            GroupCount("2025-03-12", 2),
        ]

    async def test_match_is_applied_first(self, plain):
        await seed(plain, {"p": "high", "done": True}, {"p": "high", "done": False})
        assert await plain.aggregate_group_count("p", {"done": True}) == [GroupCount("high", 1)]


class TestSessions:
    async def test_abort_discards_writes(self, plain):
        session = await plain.begin_session()
        session.start_transaction()
        await plain.insert({"n": 1}, session=session)
        assert await plain.count(session=session) == 1
        assert await plain.count() == 0

        await session.abort()
        assert await plain.count() == 0

    async def test_commit_writes_back_only_touched_documents(self, plain):
        a, b = await seed(plain, {"n": 1}, {"n": 2})
        session = await plain.begin_session()
        session.start_transaction()
        await plain.update_one_by_id(str(a["_id"]), {"n": 10}, session=session)
        # Changed outside the transaction after its snapshot was taken
        await plain.update_one_by_id(str(b["_id"]), {"n": 20})
        await session.commit()

        assert (await plain.find_one_by_id(str(a["_id"])))["n"] == 10
        assert (await plain.find_one_by_id(str(b["_id"])))["n"] == 20

    async def test_delete_inside_transaction(self, plain):
        (a,) = await seed(plain, {"n": 1})
        session = await plain.begin_session()
        session.start_transaction()
        assert await plain.delete_many([str(a["_id"])], session=session) == 1
        assert await plain.count() == 1
        await session.commit()
        assert await plain.count() == 0

    async def test_state_errors(self, plain):
        session = await plain.begin_session()
        with pytest.raises(TransactionStateError):
            await session.commit()
        with pytest.raises(TransactionStateError):
            await session.abort()

        session.start_transaction()
        with pytest.raises(TransactionStateError):
            session.start_transaction()

        await session.end()
        assert session.in_transaction is False
        with pytest.raises(TransactionStateError):
            session.start_transaction()
        with pytest.raises(TransactionStateError):
            await plain.count(session=session)

    async def test_session_without_transaction_sees_live_data(self, plain):
        await seed(plain, {"n": 1})
        session = await plain.begin_session()
        await plain.insert({"n": 2}, session=session)
        assert await plain.count() == 2

    async def test_ping(self, plain):
        assert await plain.ping() is True
