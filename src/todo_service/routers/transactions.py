from __future__ import annotations

from dataclasses import asdict
from typing import Generic, List, Optional, TypeVar

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from ..dependencies import get_transactions
from ..models import TodoPriority, TransactionResult
from ..schemas import (
    BulkDeleteRequest,
    BulkOperationData,
    TodoCreate,
    TodoOut,
    TodoUpdateItem,
    TransferPriorityRequest,
)
from ..transactions import TransactionOrchestrator

router = APIRouter(
    prefix="/api/v1/transactions",
    tags=["transactions"],
)

T = TypeVar("T")


class TransactionEnvelope(BaseModel, Generic[T]):
    """
    Outcome of a transactional operation. Failures are reported here with
    status 200, never as an HTTP error.
    """
    success: bool = Field(..., description="True when the transaction committed")
    data: Optional[T] = Field(default=None, description="Operation result when successful")
    error: Optional[str] = Field(default=None, description="Failure message when not successful")


class BulkUpdateOut(BaseModel):
    matched_count: int
    modified_count: int


class BulkOperationOut(BaseModel):
    created: List[TodoOut]
    updated: List[TodoOut]
    deleted: int
    errors: List[str] = Field(..., description="One message per failed phase")


def _envelope(result: TransactionResult) -> dict:
    return asdict(result)


# PUBLIC_INTERFACE
@router.post(
    "/create-many",
    response_model=TransactionEnvelope[List[TodoOut]],
    summary="Create Many Todos",
    description="Create all given todos, or none of them if any creation fails.",
)
async def create_many(
    payload: List[TodoCreate] = Body(...),
    orchestrator: TransactionOrchestrator = Depends(get_transactions),
):
    return _envelope(await orchestrator.create_multiple_todos(payload))


# PUBLIC_INTERFACE
@router.post(
    "/bulk-update",
    response_model=TransactionEnvelope[List[TodoOut]],
    summary="Bulk Update Todos",
    description="Apply each update in one transaction; updates for unknown todos are skipped.",
)
async def bulk_update(
    payload: List[TodoUpdateItem] = Body(...),
    orchestrator: TransactionOrchestrator = Depends(get_transactions),
):
    return _envelope(await orchestrator.bulk_update_todos(payload))


# PUBLIC_INTERFACE
@router.post(
    "/bulk-delete",
    response_model=TransactionEnvelope[int],
    summary="Bulk Delete Todos",
)
async def bulk_delete(
    payload: BulkDeleteRequest,
    orchestrator: TransactionOrchestrator = Depends(get_transactions),
):
    return _envelope(await orchestrator.bulk_delete_todos(payload.ids))


# PUBLIC_INTERFACE
@router.post(
    "/bulk",
    response_model=TransactionEnvelope[BulkOperationOut],
    summary="Bulk Operations",
    description=(
        "Run create, update and delete phases in one transaction. A failing phase is reported "
        "in data.errors while the other phases still apply."
    ),
)
async def bulk_operations(
    payload: BulkOperationData,
    orchestrator: TransactionOrchestrator = Depends(get_transactions),
):
    return _envelope(await orchestrator.perform_bulk_operations(payload))


# PUBLIC_INTERFACE
@router.post(
    "/transfer-priority",
    response_model=TransactionEnvelope[BulkUpdateOut],
    summary="Transfer Todos Between Priorities",
)
async def transfer_priority(
    payload: TransferPriorityRequest,
    orchestrator: TransactionOrchestrator = Depends(get_transactions),
):
    result = await orchestrator.transfer_todos_between_priorities(
        payload.from_priority, payload.to_priority, payload.limit
    )
    return _envelope(result)


# PUBLIC_INTERFACE
@router.post(
    "/complete-by-priority/{priority}",
    response_model=TransactionEnvelope[BulkUpdateOut],
    summary="Complete Todos By Priority",
)
async def complete_by_priority(
    priority: TodoPriority,
    orchestrator: TransactionOrchestrator = Depends(get_transactions),
):
    return _envelope(await orchestrator.complete_all_todos_by_priority(priority))


# PUBLIC_INTERFACE
@router.post(
    "/archive-completed",
    response_model=TransactionEnvelope[int],
    summary="Archive Completed Todos",
    description="Delete every completed todo.",
)
async def archive_completed(orchestrator: TransactionOrchestrator = Depends(get_transactions)):
    return _envelope(await orchestrator.archive_completed_todos())
