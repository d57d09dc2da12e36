from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

from .aggregation import AggregationEngine
from .repositories import Repository
from .transactions import TransactionOrchestrator

if TYPE_CHECKING:
    from .main import TodoServices


def get_services(request: Request) -> "TodoServices":
    """Return the services wired by create_app for this application."""
    return request.app.state.services


# PUBLIC_INTERFACE
def get_repository(request: Request) -> Repository:
    return get_services(request).repository


# PUBLIC_INTERFACE
def get_aggregation(request: Request) -> AggregationEngine:
    return get_services(request).aggregation


# PUBLIC_INTERFACE
def get_transactions(request: Request) -> TransactionOrchestrator:
    return get_services(request).transactions
