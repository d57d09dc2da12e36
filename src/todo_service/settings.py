from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_BACKENDS = {"memory", "mongodb"}
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'mongodb'
    - MONGODB_URL: connection string; transactions need a replica set.
      Default 'mongodb://localhost:27017/?replicaSet=rs0'
    - MONGODB_DATABASE: database name. Default 'todos'
    - MONGODB_COLLECTION: collection name. Default 'todos'
    - TODO_TIMEZONE: IANA zone that defines calendar days for analytics. Default 'UTC'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - LOG_LEVEL: standard logging level name. Default 'INFO'
    """

    persistence_backend: str = "memory"
    mongodb_url: str = "mongodb://localhost:27017/?replicaSet=rs0"
    mongodb_database: str = "todos"
    mongodb_collection: str = "todos"
    timezone: str = "UTC"
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


def _parse_timezone(name: str) -> str:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logging.getLogger(__name__).warning("Unknown TODO_TIMEZONE %r, using UTC", name)
        return "UTC"
    return name


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").lower()
    if backend not in _BACKENDS:
        # Fallback to memory if unsupported
        backend = "memory"

    log_level = _get_env("LOG_LEVEL", "INFO").upper()
    if log_level not in _LOG_LEVELS:
        log_level = "INFO"

    return Settings(
        persistence_backend=backend,
        mongodb_url=_get_env("MONGODB_URL", Settings.mongodb_url),
        mongodb_database=_get_env("MONGODB_DATABASE", Settings.mongodb_database),
        mongodb_collection=_get_env("MONGODB_COLLECTION", Settings.mongodb_collection),
        timezone=_parse_timezone(_get_env("TODO_TIMEZONE", "UTC")),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        log_level=log_level,
    )
