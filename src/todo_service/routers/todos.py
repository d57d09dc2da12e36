from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..dependencies import get_repository
from ..models import FindAllOptions, TodoPriority, TodoStats
from ..repositories import Repository
from ..schemas import TodoCreate, TodoOut, TodoUpdate

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
)

NOT_FOUND = "Todo not found"


class PaginatedTodos(BaseModel):
    """
    Envelope for paginated list responses.
    """
    data: List[TodoOut] = Field(..., description="Todo items on this page")
    total: int = Field(..., description="Total number of items matching the query")
    page: int = Field(..., description="Page number (1-based)")
    limit: int = Field(..., description="Page size")
    total_pages: int = Field(..., description="Number of pages for this query")


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new Todo item and return the created resource.",
    responses={
        201: {"description": "Todo created successfully"},
        422: {"description": "Validation error"},
    },
)
async def create_todo(payload: TodoCreate, repo: Repository = Depends(get_repository)) -> TodoOut:
    """
    Create a new Todo. Priority defaults to medium and completed to false.
    """
    created = await repo.create(payload)
    return TodoOut(**created)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=PaginatedTodos,
    summary="List Todos",
    description=(
        "List todos with optional filters and pagination.\n\n"
        "Query parameters:\n"
        "- page: page number, starting at 1\n"
        "- limit: page size (1..100)\n"
        "- sort_by: field to sort by (default created_at)\n"
        "- sort_order: asc or desc (default desc)\n"
        "- priority: filter by priority\n"
        "- completed: filter by completion status\n"
        "- search: case-insensitive substring of title or description"
    ),
    responses={
        200: {"description": "List retrieved successfully"},
        400: {"description": "Invalid query parameters"},
    },
)
async def list_todos(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Maximum number of items to return"),
    sort_by: str = Query("created_at", description="Field to sort by"),
    sort_order: str = Query("desc", description="Sort direction: 'asc' or 'desc'"),
    priority: Optional[TodoPriority] = Query(None, description="Filter by priority"),
    completed: Optional[bool] = Query(None, description="Filter by completion status"),
    search: Optional[str] = Query(None, description="Search text for title/description"),
    repo: Repository = Depends(get_repository),
) -> PaginatedTodos:
    """
    List todos with pagination and filters.
    """
    order = sort_order.strip().lower()
    if order not in {"asc", "desc"}:
        raise HTTPException(status_code=400, detail="sort_order must be 'asc' or 'desc'")

    options = FindAllOptions(
        page=page,
        limit=limit,
        sort_by=sort_by.strip() or "created_at",
        sort_order=order,
        priority=priority,
        completed=completed,
        search=search,
    )
    result = await repo.find_all(options)
    return PaginatedTodos(
        data=[TodoOut(**it) for it in result.data],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


# PUBLIC_INTERFACE
@router.get("/stats", summary="Todo Statistics", description="Counts by completion status and priority.")
async def get_stats(repo: Repository = Depends(get_repository)) -> TodoStats:
    return await repo.get_stats()


# PUBLIC_INTERFACE
@router.patch(
    "/actions/complete-all",
    summary="Complete All Todos",
    description="Mark every pending todo as completed.",
)
async def complete_all(repo: Repository = Depends(get_repository)) -> dict:
    pending = await repo.find_pending()
    result = await repo.bulk_update([t["id"] for t in pending], TodoUpdate(completed=True))
    return {"modified_count": result.modified_count}


# PUBLIC_INTERFACE
@router.delete(
    "/actions/completed",
    summary="Delete Completed Todos",
    description="Delete every completed todo.",
)
async def delete_completed(repo: Repository = Depends(get_repository)) -> dict:
    completed = await repo.find_completed()
    deleted = await repo.bulk_delete([t["id"] for t in completed])
    return {"deleted_count": deleted}


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Get Todo",
    description="Get a single Todo item by ID.",
    responses={
        200: {"description": "Todo found"},
        404: {"description": "Todo not found"},
    },
)
async def get_todo(todo_id: str, repo: Repository = Depends(get_repository)) -> TodoOut:
    """
    Retrieve a single Todo item by its ID. Malformed IDs are reported as not found.
    """
    item = await repo.find_by_id(todo_id)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    return TodoOut(**item)


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Update Todo",
    description="Partially update fields of a Todo item.",
    responses={
        200: {"description": "Todo updated"},
        404: {"description": "Todo not found"},
    },
)
async def patch_todo(todo_id: str, payload: TodoUpdate, repo: Repository = Depends(get_repository)) -> TodoOut:
    """
    Partial update of a Todo item.
    """
    updated = await repo.update(todo_id, payload)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    return TodoOut(**updated)


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Todo",
    description="Delete a Todo item by ID.",
    responses={
        204: {"description": "Todo deleted"},
        404: {"description": "Todo not found"},
    },
)
async def delete_todo(todo_id: str, repo: Repository = Depends(get_repository)) -> None:
    """
    Delete a Todo. Returns 204 on success, 404 if not found.
    """
    removed = await repo.remove(todo_id)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    return None
