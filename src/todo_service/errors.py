from __future__ import annotations


class TodoServiceError(Exception):
    """Base class for errors raised by the todo service core."""


# PUBLIC_INTERFACE
class StoreError(TodoServiceError):
    """A document store operation failed."""


# PUBLIC_INTERFACE
class DocumentValidationError(StoreError):
    """
    A write was rejected because the document (or patch) violates the
    collection schema.
    """


# PUBLIC_INTERFACE
class TransactionStateError(StoreError):
    """A session or transaction method was called in the wrong state."""


# PUBLIC_INTERFACE
class InvalidIdentifierError(TodoServiceError):
    """An identifier does not have the store's ObjectId shape."""

    def __init__(self, todo_id: object) -> None:
        super().__init__(f"Invalid todo id: {todo_id!r}")
        self.todo_id = todo_id
