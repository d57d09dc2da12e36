"""
Transactional composite operations.

Every public method opens a store session, runs one unit of work inside a
transaction, commits or aborts, and always ends the session. Failures come
back as TransactionResult(success=False, error=...); nothing is raised to
the caller.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence, TypeVar

from .errors import InvalidIdentifierError
from .models import BulkOperationResult, BulkUpdateResult, TodoEntity, TodoPriority, TransactionResult
from .repositories import Repository
from .schemas import BulkOperationData, TodoCreate, TodoUpdate, TodoUpdateItem
from .store import DocumentStore, StoreSession
from .utils import is_valid_object_id

logger = logging.getLogger(__name__)

T = TypeVar("T")
UnitOfWork = Callable[[StoreSession], Awaitable[T]]

UNKNOWN_ERROR = "Unknown error occurred"


def _error_message(exc: BaseException) -> str:
    return str(exc) or UNKNOWN_ERROR


# PUBLIC_INTERFACE
class TransactionOrchestrator:
    """Runs multi-step repository work atomically and reports the outcome as a value."""

    def __init__(self, store: DocumentStore, repository: Repository) -> None:
        self._store = store
        self._repo = repository

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[StoreSession]:
        """Yield a new session and end it on every exit path."""
        session = await self._store.begin_session()
        try:
            yield session
        finally:
            try:
                await session.end()
            except Exception:
                logger.exception("Failed to end store session")

    @staticmethod
    async def _abort(session: StoreSession) -> None:
        try:
            await session.abort()
        except Exception:
            logger.exception("Failed to abort transaction")

    # PUBLIC_INTERFACE
    async def execute_in_transaction(self, operation: UnitOfWork[T]) -> TransactionResult[T]:
        """
        Run operation(session) inside a transaction.

        Returns:
            TransactionResult(success=True, data=<operation result>) after commit, or
            TransactionResult(success=False, error=<message>) after abort.
        """
        try:
            async with self._session_scope() as session:
                session.start_transaction()
                try:
                    data = await operation(session)
                    await session.commit()
                except Exception:
                    if session.in_transaction:
                        await self._abort(session)
                    raise
        except Exception as exc:
            logger.warning("Transaction aborted: %s", _error_message(exc), exc_info=True)
            return TransactionResult(success=False, error=_error_message(exc))

        logger.debug("Transaction committed")
        return TransactionResult(success=True, data=data)

    # PUBLIC_INTERFACE
    async def create_multiple_todos(self, items: Sequence[TodoCreate]) -> TransactionResult[List[TodoEntity]]:
        """Create all todos or none of them."""

        async def work(session: StoreSession) -> List[TodoEntity]:
            created: List[TodoEntity] = []
            for item in items:
                created.append(await self._repo.create(item, session=session))
            return created

        return await self.execute_in_transaction(work)

    # PUBLIC_INTERFACE
    async def bulk_update_todos(self, updates: Sequence[TodoUpdateItem]) -> TransactionResult[List[TodoEntity]]:
        """Apply each update in order. Updates whose todo does not exist are skipped."""

        async def work(session: StoreSession) -> List[TodoEntity]:
            updated: List[TodoEntity] = []
            for item in updates:
                todo = await self._repo.update(item.id, item.data, session=session)
                if todo is not None:
                    updated.append(todo)
            return updated

        return await self.execute_in_transaction(work)

    # PUBLIC_INTERFACE
    async def bulk_delete_todos(self, ids: Sequence[str]) -> TransactionResult[int]:
        """Delete the given todos and return how many were removed."""

        async def work(session: StoreSession) -> int:
            return await self._repo.bulk_delete(ids, session=session)

        return await self.execute_in_transaction(work)

    # PUBLIC_INTERFACE
    async def perform_bulk_operations(self, operations: BulkOperationData) -> TransactionResult[BulkOperationResult]:
        """
        Run the create, update and delete phases in that order.

        Each phase stops at its first failure and records it in `errors`;
        the following phases still run and the transaction still commits,
        so work done before the failure is kept. A malformed id fails the
        update phase; a well-formed id without a todo is skipped.
        """

        async def work(session: StoreSession) -> BulkOperationResult:
            result = BulkOperationResult()

            if operations.create_todos:
                try:
                    for item in operations.create_todos:
                        result.created.append(await self._repo.create(item, session=session))
                except Exception as exc:
                    result.errors.append(f"Create operation failed: {_error_message(exc)}")

            if operations.update_todos:
                try:
                    for update in operations.update_todos:
                        if not is_valid_object_id(update.id):
                            raise InvalidIdentifierError(update.id)
                        todo = await self._repo.update(update.id, update.data, session=session)
                        if todo is not None:
                            result.updated.append(todo)
                except Exception as exc:
                    result.errors.append(f"Update operation failed: {_error_message(exc)}")

            if operations.delete_todo_ids:
                try:
                    result.deleted = await self._repo.bulk_delete(operations.delete_todo_ids, session=session)
                except Exception as exc:
                    result.errors.append(f"Delete operation failed: {_error_message(exc)}")

            if result.errors:
                logger.warning("Bulk operations finished with %d error(s)", len(result.errors))
            return result

        return await self.execute_in_transaction(work)

    # PUBLIC_INTERFACE
    async def transfer_todos_between_priorities(
        self,
        from_priority: TodoPriority,
        to_priority: TodoPriority,
        limit: Optional[int] = None,
    ) -> TransactionResult[BulkUpdateResult]:
        """Move todos from one priority to another, at most `limit` of them when given."""

        async def work(session: StoreSession) -> BulkUpdateResult:
            todos = await self._repo.find_by_priority(from_priority, session=session)
            if limit:
                todos = todos[:limit]
            ids = [t["id"] for t in todos]
            return await self._repo.bulk_update(ids, TodoUpdate(priority=to_priority), session=session)

        return await self.execute_in_transaction(work)

    # PUBLIC_INTERFACE
    async def complete_all_todos_by_priority(self, priority: TodoPriority) -> TransactionResult[BulkUpdateResult]:
        """Mark every pending todo of this priority as completed."""

        async def work(session: StoreSession) -> BulkUpdateResult:
            todos = await self._repo.find_by_priority(priority, session=session)
            ids = [t["id"] for t in todos if not t["completed"]]
            return await self._repo.bulk_update(ids, TodoUpdate(completed=True), session=session)

        return await self.execute_in_transaction(work)

    # PUBLIC_INTERFACE
    async def archive_completed_todos(self) -> TransactionResult[int]:
        """Delete every completed todo. There is no separate archive."""

        async def work(session: StoreSession) -> int:
            todos = await self._repo.find_completed(session=session)
            return await self._repo.bulk_delete([t["id"] for t in todos], session=session)

        return await self.execute_in_transaction(work)
