"""
Database connection management.
Handles async SQLAlchemy engine creation and table setup.
"""

import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from leasequeue.config import Settings, get_settings
from leasequeue.db.models import job_table, payload_serializer
from leasequeue.db.store import JobStore
from leasequeue.errors import DatabaseMismatchError, QueueNotInitializedError

logger = logging.getLogger(__name__)

# Global engine instance
_engine: AsyncEngine | None = None


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    """
    Create an async engine for the configured database.

    Args:
        settings: Queue settings. Defaults to the cached settings.

    Returns:
        AsyncEngine: A new SQLAlchemy async engine.
    """
    settings = settings or get_settings()
    url = make_url(settings.database)

    kwargs: dict = {
        "echo": settings.echo_sql,
        "pool_pre_ping": True,
        "json_serializer": payload_serializer,
    }
    if url.get_backend_name() != "sqlite":
        kwargs["pool_size"] = settings.pool_size
        kwargs["max_overflow"] = settings.max_overflow
    return create_async_engine(url, **kwargs)


def get_test_engine(database_url: str) -> AsyncEngine:
    """
    Create a test database engine with NullPool.

    Args:
        database_url: The database URL for testing.

    Returns:
        AsyncEngine: The test SQLAlchemy async engine instance.
    """
    return create_async_engine(
        database_url,
        poolclass=NullPool,
        json_serializer=payload_serializer,
        echo=False,
    )


async def create_tables(engine: AsyncEngine, settings: Settings) -> None:
    """Create the queue table and its archive table if missing."""
    for name in (settings.collection, settings.archive_collection):
        await JobStore(engine, job_table(name)).create()


async def init_db(settings: Settings | None = None) -> AsyncEngine:
    """
    Initialize the shared engine and make sure the queue tables exist.
    Should be called on process startup.

    Raises:
        DatabaseMismatchError: If the shared engine already points at a
            different database. Call close_db() first to switch.
    """
    global _engine
    settings = settings or get_settings()
    if _engine is None:
        _engine = create_engine(settings)
    elif _engine.url != make_url(settings.database):
        raise DatabaseMismatchError(
            _engine.url.render_as_string(), make_url(settings.database).render_as_string()
        )
    await create_tables(_engine, settings)
    logger.info(
        "Database connection initialized",
        extra={"collection": settings.collection},
    )
    return _engine


def get_engine() -> AsyncEngine:
    """
    Get the shared engine.

    Raises:
        QueueNotInitializedError: If init_db() has not been called.
    """
    if _engine is None:
        raise QueueNotInitializedError()
    return _engine


async def close_db() -> None:
    """
    Dispose of the shared engine.
    Should be called on process shutdown.
    """
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Database connection closed")
