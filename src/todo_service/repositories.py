from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from .models import (
    BulkUpdateResult,
    FindAllOptions,
    PaginatedResult,
    TodoEntity,
    TodoPriority,
    TodoStats,
    todo_from_document,
)
from .schemas import TodoCreate, TodoUpdate
from .store import DocumentStore, StoreSession
from .utils import is_valid_object_id, page_skip, substring_filter, total_pages, utcnow, valid_object_ids

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class Repository(ABC):
    """
    Abstract repository contract for todo storage.

    Every method takes an optional `session`; when given, the call runs inside
    that session's transaction. Malformed ids are treated as "not found".
    """

    @abstractmethod
    async def create(self, data: TodoCreate, *, session: Optional[StoreSession] = None) -> TodoEntity:
        """Create and return a new TodoEntity."""

    @abstractmethod
    async def find_all(
        self, options: Optional[FindAllOptions] = None, *, session: Optional[StoreSession] = None
    ) -> PaginatedResult[TodoEntity]:
        """
        Return one page of TodoEntities plus the total matching the filters.
        - Supports page/limit
        - Filter by priority and completed
        - Substring search across title and description (case-insensitive)
        - Sorting by any field (asc/desc)
        """

    @abstractmethod
    async def find_by_id(self, todo_id: str, *, session: Optional[StoreSession] = None) -> Optional[TodoEntity]:
        """Return a TodoEntity by id, or None if not found."""

    @abstractmethod
    async def update(
        self, todo_id: str, data: TodoUpdate, *, session: Optional[StoreSession] = None
    ) -> Optional[TodoEntity]:
        """Update fields of an existing TodoEntity. Return updated entity or None if not found."""

    @abstractmethod
    async def remove(self, todo_id: str, *, session: Optional[StoreSession] = None) -> Optional[TodoEntity]:
        """Delete a TodoEntity by id. Return the deleted entity, or None if not found."""

    @abstractmethod
    async def bulk_update(
        self, ids: Sequence[str], data: TodoUpdate, *, session: Optional[StoreSession] = None
    ) -> BulkUpdateResult:
        """Apply the same patch to every todo in ids."""

    @abstractmethod
    async def bulk_delete(self, ids: Sequence[str], *, session: Optional[StoreSession] = None) -> int:
        """Delete every todo in ids. Return how many were deleted."""

    @abstractmethod
    async def get_stats(self, *, session: Optional[StoreSession] = None) -> TodoStats:
        """Return total/completed/pending counts and counts per priority."""

    @abstractmethod
    async def find_by_priority(
        self, priority: TodoPriority, *, session: Optional[StoreSession] = None
    ) -> List[TodoEntity]:
        """Return all todos with this priority, in store order."""

    @abstractmethod
    async def find_completed(self, *, session: Optional[StoreSession] = None) -> List[TodoEntity]:
        """Return all completed todos, in store order."""

    @abstractmethod
    async def find_pending(self, *, session: Optional[StoreSession] = None) -> List[TodoEntity]:
        """Return all pending todos, in store order."""

    @abstractmethod
    async def search(self, query: str, *, session: Optional[StoreSession] = None) -> List[TodoEntity]:
        """Return all todos whose title or description contains query (case-insensitive)."""


# PUBLIC_INTERFACE
class TodoRepository(Repository):
    """
    Repository over any DocumentStore. Owns filter construction and id
    validation; store failures propagate unchanged.
    """

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def _now(self) -> datetime:
        return self._clock()

    async def create(self, data: TodoCreate, *, session: Optional[StoreSession] = None) -> TodoEntity:
        now = self._now()
        doc = {**data.to_document(), "created_at": now, "updated_at": now}
        stored = await self._store.insert(doc, session=session)
        return todo_from_document(stored)

    @staticmethod
    def _build_filter(options: FindAllOptions) -> Dict[str, Any]:
        flt: Dict[str, Any] = {}
        if options.priority is not None:
            flt["priority"] = TodoPriority(options.priority).value
        if options.completed is not None:
            flt["completed"] = options.completed
        if options.search is not None:
            flt.update(substring_filter(options.search))
        return flt

    async def find_all(
        self, options: Optional[FindAllOptions] = None, *, session: Optional[StoreSession] = None
    ) -> PaginatedResult[TodoEntity]:
        q = options or FindAllOptions()
        flt = self._build_filter(q)
        direction = 1 if q.sort_order == "asc" else -1
        # _id breaks ties so pages never overlap
        sort = [(q.sort_by, direction), ("_id", direction)]
        skip = page_skip(q.page, q.limit)

        if session is None:
            docs, total = await asyncio.gather(
                self._store.find_many(flt, sort=sort, skip=skip, limit=q.limit),
                self._store.count(flt),
            )
        else:
            # One operation at a time on a session
            docs = await self._store.find_many(flt, sort=sort, skip=skip, limit=q.limit, session=session)
            total = await self._store.count(flt, session=session)

        return PaginatedResult(
            data=[todo_from_document(d) for d in docs],
            total=total,
            page=q.page,
            limit=q.limit,
            total_pages=total_pages(total, q.limit),
        )

    async def find_by_id(self, todo_id: str, *, session: Optional[StoreSession] = None) -> Optional[TodoEntity]:
        if not is_valid_object_id(todo_id):
            return None
        doc = await self._store.find_one_by_id(todo_id, session=session)
        return None if doc is None else todo_from_document(doc)

    async def update(
        self, todo_id: str, data: TodoUpdate, *, session: Optional[StoreSession] = None
    ) -> Optional[TodoEntity]:
        if not is_valid_object_id(todo_id):
            return None
        patch = {**data.to_patch(), "updated_at": self._now()}
        doc = await self._store.update_one_by_id(todo_id, patch, session=session)
        return None if doc is None else todo_from_document(doc)

    async def remove(self, todo_id: str, *, session: Optional[StoreSession] = None) -> Optional[TodoEntity]:
        if not is_valid_object_id(todo_id):
            return None
        doc = await self._store.delete_one_by_id(todo_id, session=session)
        return None if doc is None else todo_from_document(doc)

    async def bulk_update(
        self, ids: Sequence[str], data: TodoUpdate, *, session: Optional[StoreSession] = None
    ) -> BulkUpdateResult:
        valid = valid_object_ids(ids)
        if len(valid) != len(ids):
            logger.debug("bulk_update dropped %d malformed id(s)", len(ids) - len(valid))
        patch = {**data.to_patch(), "updated_at": self._now()}
        result = await self._store.update_many(valid, patch, session=session)
        logger.debug("bulk_update matched=%d modified=%d", result.matched_count, result.modified_count)
        return result

    async def bulk_delete(self, ids: Sequence[str], *, session: Optional[StoreSession] = None) -> int:
        valid = valid_object_ids(ids)
        deleted = await self._store.delete_many(valid, session=session)
        logger.debug("bulk_delete requested=%d deleted=%d", len(ids), deleted)
        return deleted

    async def get_stats(self, *, session: Optional[StoreSession] = None) -> TodoStats:
        if session is None:
            total, completed, groups = await asyncio.gather(
                self._store.count({}),
                self._store.count({"completed": True}),
                self._store.aggregate_group_count("priority"),
            )
        else:
            total = await self._store.count({}, session=session)
            completed = await self._store.count({"completed": True}, session=session)
            groups = await self._store.aggregate_group_count("priority", session=session)

        by_priority = {p.value: 0 for p in TodoPriority}
        for row in groups:
            if row.key in by_priority:
                by_priority[row.key] = row.count

        return TodoStats(
            total=total,
            completed=completed,
            pending=total - completed,
            by_priority=by_priority,
        )

    async def _scan(self, flt: Dict[str, Any], session: Optional[StoreSession]) -> List[TodoEntity]:
        docs = await self._store.find_many(flt, session=session)
        return [todo_from_document(d) for d in docs]

    async def find_by_priority(
        self, priority: TodoPriority, *, session: Optional[StoreSession] = None
    ) -> List[TodoEntity]:
        return await self._scan({"priority": TodoPriority(priority).value}, session)

    async def find_completed(self, *, session: Optional[StoreSession] = None) -> List[TodoEntity]:
        return await self._scan({"completed": True}, session)

    async def find_pending(self, *, session: Optional[StoreSession] = None) -> List[TodoEntity]:
        return await self._scan({"completed": False}, session)

    async def search(self, query: str, *, session: Optional[StoreSession] = None) -> List[TodoEntity]:
        return await self._scan(substring_filter(query), session)
