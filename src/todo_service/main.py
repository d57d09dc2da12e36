from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from .aggregation import AggregationEngine
from .db import MongoStore
from .errors import StoreError
from .repositories import Repository, TodoRepository
from .routers import analytics as analytics_router
from .routers import todos as todos_router
from .routers import transactions as transactions_router
from .schemas import TODO_SCHEMA
from .settings import Settings, get_settings
from .store import DocumentStore, InMemoryStore
from .transactions import TransactionOrchestrator

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "todos",
        "description": "CRUD operations for Todo items with filtering, sorting, search, and pagination.",
    },
    {"name": "analytics", "description": "Read-only statistics, trends and rankings."},
    {"name": "transactions", "description": "Atomic multi-step operations reporting success or failure."},
]


@dataclass
class TodoServices:
    """Everything the HTTP layer needs, wired once at startup."""

    backend: str
    store: DocumentStore
    repository: Repository
    aggregation: AggregationEngine
    transactions: TransactionOrchestrator


# PUBLIC_INTERFACE
def configure_logging(level: str) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# PUBLIC_INTERFACE
def build_store(settings: Settings) -> DocumentStore:
    """
    Return the configured document store.
    - memory: InMemoryStore
    - mongodb: MongoStore (motor)
    """
    if settings.persistence_backend == "mongodb":
        return MongoStore.from_url(
            settings.mongodb_url,
            settings.mongodb_database,
            settings.mongodb_collection,
            schema=TODO_SCHEMA,
        )
    return InMemoryStore(schema=TODO_SCHEMA)


# PUBLIC_INTERFACE
def build_services(settings: Settings, store: Optional[DocumentStore] = None) -> TodoServices:
    """Composition root: store -> repository -> aggregation engine -> orchestrator."""
    store = store if store is not None else build_store(settings)
    repository = TodoRepository(store)
    return TodoServices(
        backend=settings.persistence_backend,
        store=store,
        repository=repository,
        aggregation=AggregationEngine(store, timezone=settings.timezone),
        transactions=TransactionOrchestrator(store, repository),
    )


# PUBLIC_INTERFACE
def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    configure_logs: bool = False,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use; read from the environment when omitted.
        store: Document store to use instead of the configured backend.
        configure_logs: Configure root logging from settings on startup.
    """
    settings = settings or get_settings()
    services = build_services(settings, store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if configure_logs:
            configure_logging(settings.log_level)
        if isinstance(services.store, MongoStore):
            await services.store.ensure_indexes()
        logger.info("Todo service started with %s backend", services.backend)
        yield
        if isinstance(services.store, MongoStore):
            services.store.close()

    app = FastAPI(
        title="Todo Backend",
        description="Todo persistence, analytics and transactional bulk operations over a document store.",
        version="0.2.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.services = services

    # Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return a consistent JSON structure for request validation errors.

        Response format:
            {
                "error": "ValidationError",
                "detail": [... pydantic/fastapi error details ...],
                "message": "Request validation failed"
            }
        """
        return JSONResponse(
            status_code=422,
            content={
                "error": "ValidationError",
                "message": "Request validation failed",
                "detail": _jsonable_errors(exc),
            },
        )

    @app.exception_handler(StoreError)
    async def store_exception_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.exception("%s %s - store error", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": type(exc).__name__, "message": str(exc)})

    @app.exception_handler(PyMongoError)
    async def driver_exception_handler(request: Request, exc: PyMongoError) -> JSONResponse:
        logger.exception("%s %s - database error", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=503, content={"error": type(exc).__name__, "message": "Database unavailable"}
        )

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    async def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health and store reachability.
        """
        return {
            "message": "Healthy",
            "backend": services.backend,
            "store": await services.store.ping(),
        }

    app.include_router(todos_router.router)
    app.include_router(analytics_router.router)
    app.include_router(transactions_router.router)
    return app


def _jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors with non-JSON context values (e.g. exceptions) turned into strings."""
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        errors.append(err)
    return errors


# ASGI entry point: uvicorn todo_service.main:app
app = create_app(configure_logs=True)
