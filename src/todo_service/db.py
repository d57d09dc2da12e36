"""
MongoDB document store.

This module provides:
- MongoStore: DocumentStore backed by a Motor (async driver) collection
- MongoSession: StoreSession wrapping a Motor client session
- Index creation and health check utilities

Transactions require MongoDB running as a replica set (or sharded cluster).
"""
from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession, AsyncIOMotorCollection
from pymongo import ASCENDING, DESCENDING, TEXT, IndexModel, ReturnDocument
from pymongo.errors import PyMongoError

from .errors import StoreError, TransactionStateError
from .models import BulkUpdateResult, GroupCount
from .store import CollectionSchema, Document, DocumentStore, SortSpec, StoreSession

logger = logging.getLogger(__name__)

# Mirrors the query patterns of the repository and the aggregation engine.
TODO_INDEXES = [
    IndexModel([("completed", ASCENDING)]),
    IndexModel([("priority", ASCENDING)]),
    IndexModel([("created_at", DESCENDING)]),
    IndexModel([("title", TEXT), ("description", TEXT)]),
]


def _oid(doc_id: str) -> ObjectId:
    return ObjectId(doc_id)


# PUBLIC_INTERFACE
class MongoSession(StoreSession):
    """StoreSession over a Motor client session."""

    def __init__(self, session: AsyncIOMotorClientSession) -> None:
        self._session = session
        self._ended = False

    @property
    def native(self) -> AsyncIOMotorClientSession:
        return self._session

    @property
    def in_transaction(self) -> bool:
        return bool(self._session.in_transaction)

    def start_transaction(self) -> None:
        if self._ended:
            raise TransactionStateError("Cannot start a transaction on an ended session")
        self._session.start_transaction()

    async def commit(self) -> None:
        await self._session.commit_transaction()

    async def abort(self) -> None:
        await self._session.abort_transaction()

    async def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        # end_session aborts an open transaction server-side.
        await self._session.end_session()


# PUBLIC_INTERFACE
class MongoStore(DocumentStore):
    """
    DocumentStore over a single MongoDB collection.

    Driver errors (pymongo.errors.PyMongoError) propagate unchanged.
    """

    def __init__(
        self,
        client: AsyncIOMotorClient,
        database: str,
        collection: str,
        schema: Optional[CollectionSchema] = None,
    ) -> None:
        self._client = client
        self._collection: AsyncIOMotorCollection = client[database][collection]
        self._schema = schema

    # PUBLIC_INTERFACE
    @classmethod
    def from_url(cls, url: str, database: str, collection: str, schema: Optional[CollectionSchema] = None) -> "MongoStore":
        """Create a store with its own tz-aware client for `url`."""
        client = AsyncIOMotorClient(url, tz_aware=True)
        return cls(client, database, collection, schema=schema)

    @property
    def collection(self) -> AsyncIOMotorCollection:
        return self._collection

    @staticmethod
    def _native(session: Optional[StoreSession]) -> Optional[AsyncIOMotorClientSession]:
        if session is None:
            return None
        if not isinstance(session, MongoSession):
            raise StoreError("Session does not belong to this store")
        return session.native

    async def ensure_indexes(self) -> List[str]:
        """Create the collection indexes if missing and return their names."""
        names = await self._collection.create_indexes(TODO_INDEXES)
        logger.info("Ensured indexes on %s: %s", self._collection.full_name, ", ".join(names))
        return names

    async def ping(self) -> bool:
        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError:
            logger.warning("MongoDB ping failed", exc_info=True)
            return False

    def close(self) -> None:
        self._client.close()

    async def insert(self, document: Mapping[str, Any], *, session: Optional[StoreSession] = None) -> Document:
        if self._schema is not None:
            self._schema.validate_document(document)
        doc = dict(document)
        result = await self._collection.insert_one(doc, session=self._native(session))
        doc["_id"] = result.inserted_id
        return doc

    async def find_many(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        *,
        session: Optional[StoreSession] = None,
    ) -> List[Document]:
        cursor = self._collection.find(dict(filter or {}), session=self._native(session))
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=None)

    async def count(self, filter: Optional[Mapping[str, Any]] = None, *, session: Optional[StoreSession] = None) -> int:
        return await self._collection.count_documents(dict(filter or {}), session=self._native(session))

    async def find_one_by_id(self, doc_id: str, *, session: Optional[StoreSession] = None) -> Optional[Document]:
        return await self._collection.find_one({"_id": _oid(doc_id)}, session=self._native(session))

    async def update_one_by_id(
        self, doc_id: str, patch: Mapping[str, Any], *, session: Optional[StoreSession] = None
    ) -> Optional[Document]:
        if self._schema is not None:
            self._schema.validate_patch(patch)
        return await self._collection.find_one_and_update(
            {"_id": _oid(doc_id)},
            {"$set": dict(patch)},
            return_document=ReturnDocument.AFTER,
            session=self._native(session),
        )

    async def delete_one_by_id(self, doc_id: str, *, session: Optional[StoreSession] = None) -> Optional[Document]:
        return await self._collection.find_one_and_delete({"_id": _oid(doc_id)}, session=self._native(session))

    async def update_many(
        self, doc_ids: Sequence[str], patch: Mapping[str, Any], *, session: Optional[StoreSession] = None
    ) -> BulkUpdateResult:
        if self._schema is not None:
            self._schema.validate_patch(patch)
        result = await self._collection.update_many(
            {"_id": {"$in": [_oid(i) for i in doc_ids]}},
            {"$set": dict(patch)},
            session=self._native(session),
        )
        return BulkUpdateResult(matched_count=result.matched_count, modified_count=result.modified_count)

    async def delete_many(self, doc_ids: Sequence[str], *, session: Optional[StoreSession] = None) -> int:
        result = await self._collection.delete_many(
            {"_id": {"$in": [_oid(i) for i in doc_ids]}},
            session=self._native(session),
        )
        return result.deleted_count

    async def aggregate_group_count(
        self,
        group_field: str,
        match: Optional[Mapping[str, Any]] = None,
        day_timezone: Optional[str] = None,
        *,
        session: Optional[StoreSession] = None,
    ) -> List[GroupCount]:
        key: Any = f"${group_field}"
        if day_timezone:
            key = {"$dateToString": {"format": "%Y-%m-%d", "date": key, "timezone": day_timezone}}
        pipeline: List[Mapping[str, Any]] = []
        if match:
            pipeline.append({"$match": dict(match)})
        pipeline.append({"$group": {"_id": key, "count": {"$sum": 1}}})
        pipeline.append({"$sort": {"_id": 1}})

        cursor = self._collection.aggregate(pipeline, session=self._native(session))
        rows = await cursor.to_list(length=None)
        return [GroupCount(key=row["_id"], count=row["count"]) for row in rows]

    async def begin_session(self) -> MongoSession:
        native = await self._client.start_session()
        return MongoSession(native)
