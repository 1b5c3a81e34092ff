"""Async SQLAlchemy engine and session factory.

The engine is created lazily on first call and reused across the process
lifetime.  Call ``dispose_engine()`` during graceful shutdown.
"""

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cds_db.config import (
    APPLICATION_NAME,
    DatabaseSettings,
    get_async_url,
    load_database_settings,
)

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def connect_args(settings: DatabaseSettings) -> dict:
    """asyncpg connection arguments: application name and statement timeout."""
    server_settings = {"application_name": APPLICATION_NAME}
    if settings.statement_timeout_ms > 0:
        server_settings["statement_timeout"] = str(settings.statement_timeout_ms)
    return {"server_settings": server_settings}


def get_engine(settings: DatabaseSettings | None = None) -> AsyncEngine:
    """Return (and lazily create) the singleton async engine.

    ``settings`` only matters on the first call; later calls return the
    existing engine.
    """
    global _engine
    if _engine is None:
        settings = settings or load_database_settings()
        _engine = create_async_engine(
            get_async_url(),
            echo=settings.echo,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_recycle=settings.pool_recycle,
            pool_pre_ping=True,
            connect_args=connect_args(settings),
        )
        logger.info(
            "Database engine created (pool_size=%d, max_overflow=%d)",
            settings.pool_size,
            settings.max_overflow,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the engine's connection pool (call on app shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
