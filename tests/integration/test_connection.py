"""
Integration tests for shared engine management.
"""

import pytest
from sqlalchemy import inspect

from leasequeue.config import Settings
from leasequeue.db import close_db, get_engine, init_db
from leasequeue.errors import DatabaseMismatchError, QueueNotInitializedError
from leasequeue.queue import create_queue


class TestConnection:
    """Tests for init_db, get_engine and close_db."""

    async def test_get_engine_before_init(self):
        """Test that the shared engine must be initialized first."""
        await close_db()

        with pytest.raises(QueueNotInitializedError):
            get_engine()

    async def test_init_creates_tables(self, database_url: str):
        """Test that init_db creates the queue and archive tables."""
        settings = Settings(_env_file=None, database=database_url, collection="conn_test")

        engine = await init_db(settings)
        try:
            assert get_engine() is engine
            async with engine.connect() as conn:
                names = await conn.run_sync(lambda sync: inspect(sync).get_table_names())
            assert "conn_test" in names
            assert "conn_test_purged" in names
        finally:
            await close_db()

        with pytest.raises(QueueNotInitializedError):
            get_engine()

    async def test_create_queue(self, database_url: str, metrics):
        """Test that create_queue returns a working queue on the shared engine."""
        settings = Settings(_env_file=None, database=database_url, collection="factory_test")

        queue = await create_queue(settings, metrics=metrics)
        try:
            assert queue.store.engine is get_engine()
            assert queue.name == "factory_test"
            await queue.flush()

            job = await queue.insert({"msg": "hello"})
            assert (await queue.lock_next("w")).id == job.id
            assert (await queue.complete(job, "w")).id == job.id
        finally:
            await close_db()

    async def test_init_rejects_other_database(self, database_url: str, tmp_path):
        """Test that the shared engine is not silently reused for another database."""
        settings = Settings(_env_file=None, database=database_url, collection="conn_test")
        other = Settings(
            _env_file=None,
            database=f"sqlite+aiosqlite:///{tmp_path / 'other.db'}",
            collection="conn_test",
        )

        engine = await init_db(settings)
        try:
            assert await init_db(settings) is engine
            with pytest.raises(DatabaseMismatchError):
                await create_queue(other)
        finally:
            await close_db()

        engine = await init_db(other)
        try:
            assert str(engine.url).endswith("other.db")
        finally:
            await close_db()
