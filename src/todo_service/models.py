from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Mapping, NamedTuple, Optional, TypedDict, TypeVar

T = TypeVar("T")


# PUBLIC_INTERFACE
class TodoPriority(str, Enum):
    """Priority of a todo. Values are the strings stored in the collection."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Lower rank means more urgent.
PRIORITY_RANK: Dict[TodoPriority, int] = {
    TodoPriority.HIGH: 0,
    TodoPriority.MEDIUM: 1,
    TodoPriority.LOW: 2,
}


# PUBLIC_INTERFACE
class TodoEntity(TypedDict):
    """
    A Todo item as returned by the repository and the aggregation engine.

    Fields:
    - id: 24-character hex ObjectId string assigned by the store
    - title: Short title (1..200 chars, trimmed on input via schemas)
    - description: Optional detailed description (<= 1000 chars)
    - priority: One of low/medium/high
    - completed: Boolean completion flag
    - created_at: UTC creation timestamp (aware datetime)
    - updated_at: UTC last update timestamp (aware datetime)
    """

    id: str
    title: str
    description: Optional[str]
    priority: TodoPriority
    completed: bool
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
def todo_from_document(doc: Mapping[str, Any]) -> TodoEntity:
    """Convert a stored document (with an ObjectId `_id`) into a TodoEntity."""
    return {
        "id": str(doc["_id"]),
        "title": doc["title"],
        "description": doc.get("description"),
        "priority": TodoPriority(doc["priority"]),
        "completed": bool(doc["completed"]),
        "created_at": doc["created_at"],
        "updated_at": doc["updated_at"],
    }


@dataclass(frozen=True)
class FindAllOptions:
    """
    Query parameters for listing todos.
    """
    page: int = 1
    limit: int = 10
    sort_by: str = "created_at"
    sort_order: str = "desc"  # asc or desc
    priority: Optional[TodoPriority] = None
    completed: Optional[bool] = None
    search: Optional[str] = None


@dataclass
class PaginatedResult(Generic[T]):
    data: List[T]
    total: int
    page: int
    limit: int
    total_pages: int


@dataclass
class BulkUpdateResult:
    matched_count: int
    modified_count: int


@dataclass
class TodoStats:
    total: int
    completed: int
    pending: int
    by_priority: Dict[str, int]


class GroupCount(NamedTuple):
    """One row of a grouped count: the group key and how many documents share it."""

    key: Any
    count: int


@dataclass
class DailyCount:
    date: str
    count: int


@dataclass
class PriorityTrend:
    priority: TodoPriority
    count: int
    percentage: int


@dataclass
class TodoAnalytics:
    total_todos: int
    completion_rate: float
    priority_distribution: Dict[str, int]
    # Not tracked: there is no completion timestamp on a todo.
    average_completion_time: float
    todos_created_today: int
    todos_completed_today: int


@dataclass
class TodoTrends:
    daily_creation: List[DailyCount]
    daily_completion: List[DailyCount]
    priority_trends: List[PriorityTrend]


@dataclass
class CompletionStats:
    """
    Completion counters. The due-date buckets stay at zero because todos
    carry no due date.
    """
    completed: int
    pending: int
    overdue: int = 0
    due_today: int = 0
    due_tomorrow: int = 0
    due_this_week: int = 0


@dataclass
class TransactionResult(Generic[T]):
    """Outcome of a transactional operation. Exactly one of data/error is meaningful."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None


@dataclass
class BulkOperationResult:
    created: List[TodoEntity] = field(default_factory=list)
    updated: List[TodoEntity] = field(default_factory=list)
    deleted: int = 0
    errors: List[str] = field(default_factory=list)
