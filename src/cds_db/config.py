"""Database configuration — connection URL and pool settings from environment.

The URL comes from ``DATABASE_URL`` when set, otherwise it is assembled
from ``PG_HOST``, ``PG_PORT``, ``PG_USER``, ``PG_PASSWORD`` and
``PG_DATABASE`` (convenient for docker-compose).  Alembic runs through
psycopg2 and needs the plain ``postgresql://`` scheme; the runtime engine
uses asyncpg.
"""

import os
from dataclasses import dataclass

ASYNC_SCHEME = "postgresql+asyncpg://"
SYNC_SCHEME = "postgresql://"

# Shown in pg_stat_activity for engine sessions
APPLICATION_NAME = "cds-knowledge-engine"


@dataclass(frozen=True)
class DatabaseSettings:
    """Pool and session tuning for the async engine."""

    pool_size: int = 5
    max_overflow: int = 10
    # Seconds before a pooled connection is replaced
    pool_recycle: int = 1800
    # Milliseconds; 0 disables the server-side limit
    statement_timeout_ms: int = 30000
    echo: bool = False


def load_database_settings() -> DatabaseSettings:
    return DatabaseSettings(
        pool_size=int(os.getenv("PG_POOL_SIZE", "5")),
        max_overflow=int(os.getenv("PG_MAX_OVERFLOW", "10")),
        pool_recycle=int(os.getenv("PG_POOL_RECYCLE", "1800")),
        statement_timeout_ms=int(os.getenv("PG_STATEMENT_TIMEOUT_MS", "30000")),
        echo=os.getenv("PG_ECHO", "").strip().lower() in ("1", "true", "yes"),
    )


def _url_from_parts() -> str:
    host = os.getenv("PG_HOST", "localhost")
    port = os.getenv("PG_PORT", "5432")
    user = os.getenv("PG_USER", "cds")
    password = os.getenv("PG_PASSWORD", "cds")
    database = os.getenv("PG_DATABASE", "cds_knowledge")
    return f"{SYNC_SCHEME}{user}:{password}@{host}:{port}/{database}"


def get_sync_url() -> str:
    """Return a psycopg2 connection URL for Alembic."""
    url = os.getenv("DATABASE_URL") or _url_from_parts()
    if url.startswith(ASYNC_SCHEME):
        return SYNC_SCHEME + url[len(ASYNC_SCHEME):]
    return url


def get_async_url() -> str:
    """Return an asyncpg connection URL for the runtime engine."""
    url = os.getenv("DATABASE_URL") or _url_from_parts()
    if url.startswith(SYNC_SCHEME):
        return ASYNC_SCHEME + url[len(SYNC_SCHEME):]
    return url
