from datetime import datetime, timedelta, timezone

import pytest

from todo_service.aggregation import AggregationEngine
from todo_service.repositories import TodoRepository
from todo_service.schemas import TODO_SCHEMA, TodoCreate
from todo_service.store import InMemoryStore
from todo_service.transactions import TransactionOrchestrator

# Wednesday, mid-afternoon UTC; far enough from midnight for day-window tests.
FIXED_NOW = datetime(2025, 3, 12, 15, 30, tzinfo=timezone.utc)


class TickingClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(seconds=1)
        return value


@pytest.fixture
def store():
    return InMemoryStore(schema=TODO_SCHEMA)


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def repo(store, clock):
    return TodoRepository(store, clock=clock)


@pytest.fixture
def engine(store):
    return AggregationEngine(store, timezone="UTC", clock=lambda: FIXED_NOW)


@pytest.fixture
def orchestrator(store, repo):
    return TransactionOrchestrator(store, repo)


def make_todo(title="Test Task", description="Do something", **kwargs) -> TodoCreate:
    return TodoCreate(title=title, description=description, **kwargs)


def raw_doc(title="Seeded", priority="medium", completed=False, created_at=FIXED_NOW, updated_at=None, description=None):
    """A stored document with explicit timestamps, for inserting straight into the store."""
    return {
        "title": title,
        "description": description,
        "priority": priority,
        "completed": completed,
        "created_at": created_at,
        "updated_at": updated_at or created_at,
    }
