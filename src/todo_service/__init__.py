"""
Todo persistence and analytics service.

Core components:
- repositories.TodoRepository: CRUD, filtered/paginated queries, bulk mutation
- aggregation.AggregationEngine: analytics, trends, completion statistics
- transactions.TransactionOrchestrator: atomic composite operations

The FastAPI application lives in `todo_service.main` (`app`, `create_app`).
"""

__version__ = "0.2.0"
