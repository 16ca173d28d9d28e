"""Database configuration and connection management."""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import event, text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from portal_scheduling.config import settings
from portal_scheduling.core.exceptions import StoreUnavailableException

logger = structlog.get_logger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Convert sync PostgreSQL URL to async."""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def build_engine(database_url: str, **overrides: Any) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    PostgreSQL gets the pooled production setup. SQLite (local development and
    tests) gets a busy timeout and immediate transactions so concurrent writers
    queue instead of deadlocking.

    Args:
        database_url: Database URL, sync or async form
        overrides: Extra keyword arguments for ``create_async_engine``

    Returns:
        Configured async engine
    """
    url = normalize_database_url(database_url)

    if url.startswith("sqlite"):
        options: dict[str, Any] = {
            "echo": settings.debug,
            "connect_args": {"timeout": settings.sqlite_busy_timeout},
        }
        options.update(overrides)
        sqlite_engine = create_async_engine(url, **options)
        configure_sqlite(sqlite_engine)
        return sqlite_engine

    options = {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 3600,
        "connect_args": {
            "server_settings": {
                "application_name": settings.app_name,
            },
        },
    }
    if "poolclass" in overrides:
        # Pool sizing arguments are rejected by NullPool and friends
        for key in ("pool_size", "max_overflow", "pool_recycle"):
            options.pop(key)
    options.update(overrides)
    return create_async_engine(url, **options)


def configure_sqlite(sqlite_engine: AsyncEngine) -> None:
    """Set SQLite connection parameters on every new connection."""

    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
        # Hand transaction control to the "begin" hook below
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sqlite_engine.sync_engine, "begin")
    def begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


engine: AsyncEngine = build_engine(settings.database_url)

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block of store calls as one transaction.

    Commits when the block finishes, rolls back on any error and turns
    connection-level driver failures into ``StoreUnavailableException``.

    Args:
        session: Session the block operates on

    Yields:
        The same session
    """
    try:
        yield session
        await session.commit()
    except (OperationalError, InterfaceError) as e:
        await _safe_rollback(session)
        logger.error("store_unavailable", error=str(e))
        raise StoreUnavailableException() from e
    except Exception:
        await _safe_rollback(session)
        raise


async def _safe_rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except (OperationalError, InterfaceError) as e:
        logger.warning("rollback_failed", error=str(e))


async def check_database_connection() -> bool:
    """Check if database connection is healthy."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
