"""
Archiver for exhausted jobs.

Jobs that used up their attempts stay in the queue table (counted as
errors by stats) until a purge moves them into the archive table.
"""

import logging

from sqlalchemy import and_

from leasequeue.db import filters
from leasequeue.db.store import JobStore
from leasequeue.observability.metrics import MetricsCollector
from leasequeue.types.job import PurgeResult

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 500


class Archiver:
    """
    Moves exhausted, unlocked jobs from the queue table to an archive.

    The copy is best effort: each job is inserted into the archive on its
    own, a failed insert is logged and counted, and the pass continues.
    The originals are then deleted from the queue table whether or not
    every copy succeeded. A job whose archive insert failed is therefore
    lost; ``PurgeResult.failed`` and the ERROR log lines are the only
    record of it.
    """

    def __init__(
        self,
        store: JobStore,
        archive: JobStore,
        max_attempts: int,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the archiver.

        Args:
            store: The queue table to purge.
            archive: Where purged jobs are copied. May live on another engine.
            max_attempts: Attempts after which a job counts as exhausted.
            metrics: Optional metrics collector.
        """
        self._store = store
        self._archive = archive
        self._max_attempts = max_attempts
        self._metrics = metrics

    def _purgeable(self):
        table = self._store.table
        return and_(
            filters.is_unlocked(table),
            filters.is_exhausted(table, self._max_attempts),
        )

    async def purge(self) -> PurgeResult:
        """
        Archive and remove every exhausted, unlocked job.

        Returns:
            PurgeResult with how many jobs were archived, failed to archive,
            and were deleted from the queue table.
        """
        jobs = [job async for job in self._store.find(self._purgeable())]
        if not jobs:
            return PurgeResult()

        archived, failures = await self._archive.insert_each(jobs)
        for job, error in failures:
            logger.error(
                "Exhausted job could not be archived and will be deleted anyway",
                extra={
                    "queue": self._store.name,
                    "archive": self._archive.name,
                    "job_id": str(job.id),
                    "error": str(error),
                },
            )

        # Only the rows collected above, and only if still purgeable.
        deleted = 0
        ids = [job.id for job in jobs]
        for start in range(0, len(ids), DELETE_BATCH_SIZE):
            batch = ids[start:start + DELETE_BATCH_SIZE]
            deleted += await self._store.delete_many(
                and_(self._store.table.c.id.in_(batch), self._purgeable())
            )

        if self._metrics is not None:
            self._metrics.record_purge(self._store.name, deleted, len(failures))

        logger.info(
            f"Purged {deleted} exhausted jobs",
            extra={
                "queue": self._store.name,
                "archived": archived,
                "failed": len(failures),
            },
        )
        return PurgeResult(archived=archived, failed=len(failures), deleted=deleted)
