"""
Unit tests for purging exhausted jobs.
"""

import logging

from leasequeue.queue import Queue


async def exhaust(queue: Queue, message: str):
    return await queue.insert({"msg": message}, attempts=queue.max_attempts)


class TestPurge:
    """Tests for Queue.purge."""

    async def test_moves_exhausted_jobs(self, queue: Queue):
        """Test that exhausted jobs are copied to the archive and deleted."""
        dead = await exhaust(queue, "dead")
        alive = await queue.insert({"msg": "alive"}, attempts=1)

        result = await queue.purge()

        assert (result.archived, result.failed, result.deleted) == (1, 0, 1)
        remaining = [job async for job in queue.find()]
        assert [job.id for job in remaining] == [alive.id]

        archived = [job async for job in queue.archive.find(queue.archive.table.c.id == dead.id)]
        assert len(archived) == 1
        assert archived[0].payload == {"msg": "dead"}
        assert archived[0].attempts == queue.max_attempts
        assert archived[0].created_at == dead.created_at

    async def test_skips_locked_jobs(self, queue: Queue, hours_ago):
        """Test that an exhausted job under lease is left alone."""
        await queue.insert(
            {"msg": "busy"},
            attempts=queue.max_attempts,
            locked_by="w",
            locked_at=hours_ago(0),
        )

        result = await queue.purge()

        assert result.deleted == 0
        assert (await queue.stats()).total == 1

    async def test_nothing_to_purge(self, queue: Queue):
        """Test a purge over a healthy queue."""
        await queue.insert({"msg": "fine"})

        result = await queue.purge()

        assert (result.archived, result.failed, result.deleted) == (0, 0, 0)

    async def test_archive_failure_still_deletes(self, queue: Queue, registry, caplog):
        """Test that a failed archive copy is logged and the original removed."""
        clash = await exhaust(queue, "clash")
        await exhaust(queue, "ok")
        # Occupy the archive row the first job would be copied to.
        await queue.archive.insert({"id": clash.id, "payload": {"msg": "older"}})

        with caplog.at_level(logging.ERROR, logger="leasequeue.archiver"):
            result = await queue.purge()

        assert result.archived == 1
        assert result.failed == 1
        assert result.deleted == 2
        assert (await queue.stats()).total == 0
        assert any(
            record.levelno == logging.ERROR and "could not be archived" in record.getMessage()
            for record in caplog.records
        )
        assert registry.get_sample_value(
            "leasequeue_archive_failures_total", {"queue": "test_jobs"}
        ) == 1
        assert registry.get_sample_value(
            "leasequeue_jobs_purged_total", {"queue": "test_jobs"}
        ) == 2
