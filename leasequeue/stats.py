"""
Queue statistics.
"""

import logging

from leasequeue.db import filters
from leasequeue.db.store import JobStore
from leasequeue.observability.metrics import MetricsCollector
from leasequeue.types.job import QueueStats, utcnow

logger = logging.getLogger(__name__)


class StatsCollector:
    """
    Aggregate counts over a queue table.

    All counts are taken by one aggregate statement, so they describe a
    single snapshot: PostgreSQL evaluates a statement against one MVCC
    snapshot, and SQLite runs it inside one read transaction. Nothing is
    locked and no job is modified.
    """

    def __init__(
        self,
        store: JobStore,
        max_attempts: int,
        metrics: MetricsCollector | None = None,
    ):
        self._store = store
        self._max_attempts = max_attempts
        self._metrics = metrics

    async def stats(self) -> QueueStats:
        """
        Count jobs by state.

        Returns:
            QueueStats with ``available`` (eligible now), ``locked``,
            ``errors`` (exhausted), ``total`` and ``scheduled``.
        """
        table = self._store.table
        now = utcnow()

        counts = await self._store.aggregate(
            available=filters.is_eligible(table, self._max_attempts, now),
            locked=filters.is_locked(table),
            errors=filters.is_exhausted(table, self._max_attempts),
            total=None,
            scheduled=filters.is_scheduled(table, self._max_attempts, now),
        )
        result = QueueStats(**counts)

        if self._metrics is not None:
            self._metrics.update_queue_depth(self._store.name, counts)
        logger.debug("Computed queue stats", extra={"queue": self._store.name, **counts})

        return result
