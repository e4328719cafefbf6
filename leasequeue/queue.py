"""
The lease-based job queue.

Workers claim jobs with ``lock_next``, keep the lease alive with
``heartbeat`` and finish with ``complete`` or ``error``. A background
task runs ``cleanup`` to return jobs whose worker went silent and
``purge`` to archive jobs that ran out of attempts.

All coordination happens in the store. Nothing here holds in-process
locks, so any number of processes may share one table.
"""

import logging
from collections.abc import AsyncIterator, Mapping
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.sql.base import ReadOnlyColumnCollection

from leasequeue.archiver import Archiver
from leasequeue.config import Settings, get_settings
from leasequeue.constants import (
    DEFAULT_INSERT,
    SPAN_CLEANUP,
    SPAN_COMPLETE,
    SPAN_ERROR,
    SPAN_LOCK_NEXT,
    SPAN_PURGE,
)
from leasequeue.db import filters, init_db
from leasequeue.db.filters import Criteria
from leasequeue.db.models import job_table
from leasequeue.db.store import JobStore
from leasequeue.errors import InvalidFieldError
from leasequeue.observability.metrics import MetricsCollector, get_metrics
from leasequeue.observability.tracing import get_tracer
from leasequeue.stats import StatsCollector
from leasequeue.types.job import Job, PurgeResult, QueueStats, as_utc, utcnow

logger = logging.getLogger(__name__)

# Sentinel distinguishing "not given" from an explicit None.
_UNSET: Any = object()


class Queue:
    """
    Priority work queue with lease-based claiming.

    Jobs are claimed highest ``priority`` first, then oldest first. A
    claimed job is locked by its worker until the worker completes it,
    reports an error, releases it, or stops heartbeating for longer than
    ``settings.timeout`` seconds and ``cleanup`` reclaims it.

    Example:
        engine = create_engine(settings)
        queue = Queue(engine, settings)
        await queue.create_tables()
        await queue.insert({"email": "billy@example.com"}, priority=5)

        job = await queue.lock_next("worker-1")
        if job is not None:
            ...
            await queue.complete(job, "worker-1")
    """

    def __init__(
        self,
        engine: AsyncEngine,
        settings: Settings | None = None,
        archive: JobStore | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the queue.

        Args:
            engine: Async engine for the database holding the queue table.
            settings: Queue settings (collection, attempts, timeout).
                Defaults to the cached settings.
            archive: Store that purge copies exhausted jobs into. Defaults
                to the ``<collection>_purged`` table on the same engine.
            metrics: Metrics collector. Defaults to the shared one.
        """
        self.settings = settings or get_settings()
        self.metrics = metrics or get_metrics()

        metadata = MetaData()
        self.store = JobStore(engine, job_table(self.settings.collection, metadata))
        self.archive = archive or JobStore(
            engine, job_table(self.settings.archive_collection, metadata)
        )
        self._archiver = Archiver(
            self.store, self.archive, self.max_attempts, self.metrics
        )
        self._stats = StatsCollector(self.store, self.max_attempts, self.metrics)

    @property
    def name(self) -> str:
        return self.store.name

    @property
    def max_attempts(self) -> int:
        return self.settings.attempts

    @property
    def timeout(self) -> timedelta:
        return timedelta(seconds=self.settings.timeout)

    @property
    def columns(self) -> ReadOnlyColumnCollection:
        """Table columns, for building criteria such as ``columns.priority > 1``."""
        return self.store.table.c

    async def create_tables(self) -> None:
        """Create the queue and archive tables if they do not exist."""
        await self.store.create()
        await self.archive.create()

    async def insert(self, payload: Mapping[str, Any] | None = None, **overrides: Any) -> Job:
        """
        Add a job to the queue.

        Args:
            payload: Caller data stored with the job, never interpreted.
            **overrides: Control fields to set instead of the defaults
                (priority, attempts, locked_by, locked_at, keep_alive_at,
                active_at, last_error).

        Returns:
            The stored job, including its generated id.

        Raises:
            InvalidFieldError: If an override is not a control field.
        """
        for key in overrides:
            if key not in DEFAULT_INSERT:
                raise InvalidFieldError(key)

        now = utcnow()
        values: dict[str, Any] = {
            **DEFAULT_INSERT,
            **{key: as_utc(value) for key, value in overrides.items()},
        }
        values["payload"] = dict(payload or {})
        values["created_at"] = now

        # A job inserted already locked still needs lease timestamps, or
        # cleanup could never see it go stale.
        if values["locked_by"] is not None:
            values["locked_at"] = values["locked_at"] or now
            values["keep_alive_at"] = values["keep_alive_at"] or values["locked_at"]

        job = await self.store.insert(values)
        self.metrics.record_job_inserted(self.name)
        logger.debug(
            "Inserted job",
            extra={"queue": self.name, "job_id": str(job.id), "priority": job.priority},
        )
        return job

    def find(self, criteria: Criteria = None) -> AsyncIterator[Job]:
        """
        Lazily iterate over jobs matching ``criteria``.

        Example:
            async for job in queue.find({"msg": "First"}):
                ...
        """
        return self.store.find(filters.build_where(self.store.table, criteria))

    async def modify(self, criteria: Criteria, changes: Mapping[str, Any]) -> Job | None:
        """
        Apply ``changes`` to the first job matching ``criteria``.

        "First" follows the claim order (highest priority, then oldest).
        Control-field keys set columns; any other key is merged into the
        payload. Never inserts.

        Returns:
            The updated job, or None if nothing matched.
        """
        table = self.store.table
        values = filters.build_changes(table, changes, self.store.dialect_name)
        if not values:
            # Nothing to change: a no-op assignment still returns the match.
            values = {"priority": table.c.priority}

        return await self.store.claim_one(
            filters.build_where(table, criteria),
            values,
            filters.claim_order(table),
        )

    async def lock_next(self, worker_id: str) -> Job | None:
        """
        Claim the next eligible job for ``worker_id``.

        Eligible means unlocked, with attempts left, and with ``active_at``
        unset or reached. Among those the highest priority wins, then the
        oldest. Never blocks: an empty queue returns None.

        Args:
            worker_id: Identifier of the claiming worker; needed again to
                heartbeat, release or complete the job.

        Returns:
            The claimed job, or None if no job is eligible.
        """
        table = self.store.table
        now = utcnow()

        with get_tracer().start_as_current_span(SPAN_LOCK_NEXT) as span:
            span.set_attribute("queue", self.name)
            span.set_attribute("worker_id", worker_id)

            job = await self.store.claim_one(
                filters.is_eligible(table, self.max_attempts, now),
                {"locked_by": worker_id, "locked_at": now, "keep_alive_at": now},
                filters.claim_order(table),
            )

            if job is None:
                return None

            span.set_attribute("job_id", str(job.id))

        self.metrics.record_lease_acquired(self.name)
        logger.info(
            "Locked job",
            extra={"queue": self.name, "job_id": str(job.id), "worker_id": worker_id},
        )
        return job

    async def heartbeat(self, job: Job, worker_id: str) -> Job | None:
        """
        Refresh the lease's ``keep_alive_at`` so cleanup leaves it alone.

        Returns:
            The updated job, or None if ``worker_id`` no longer holds the
            lease (it expired and was reclaimed, or the job is gone).
        """
        updated = await self.store.update_one(
            filters.owned_by(self.store.table, job.id, worker_id),
            {"keep_alive_at": utcnow()},
        )
        if updated is None:
            logger.debug(
                "Heartbeat for a lease not held",
                extra={"queue": self.name, "job_id": str(job.id), "worker_id": worker_id},
            )
        return updated

    async def release(self, job: Job, worker_id: str | None) -> Job | None:
        """
        Give up the lease so the job can be claimed again.

        Only takes effect while ``worker_id`` still holds the lease.
        Attempts are not changed.

        Returns:
            The released job, or None if ``worker_id`` did not hold the
            lease. Callers must check rather than assume success.
        """
        released = await self.store.update_one(
            filters.owned_by(self.store.table, job.id, worker_id),
            {"locked_by": None, "locked_at": None, "keep_alive_at": None},
        )
        if released is None:
            logger.debug(
                "Release skipped, lease not held",
                extra={"queue": self.name, "job_id": str(job.id), "worker_id": worker_id},
            )
        return released

    async def complete(self, job: Job, worker_id: str) -> Job | None:
        """
        Remove a finished job from the queue.

        Only takes effect while ``worker_id`` still holds the lease.

        Returns:
            The removed job, or None if ``worker_id`` did not hold the
            lease (the job stays queued in that case).
        """
        with get_tracer().start_as_current_span(SPAN_COMPLETE) as span:
            span.set_attribute("queue", self.name)
            span.set_attribute("job_id", str(job.id))

            removed = await self.store.delete_one(
                filters.owned_by(self.store.table, job.id, worker_id)
            )

        if removed is None:
            logger.debug(
                "Complete skipped, lease not held",
                extra={"queue": self.name, "job_id": str(job.id), "worker_id": worker_id},
            )
            return None

        self.metrics.record_job_completed(self.name)
        logger.info(
            "Completed job",
            extra={"queue": self.name, "job_id": str(job.id), "worker_id": worker_id},
        )
        return removed

    async def error(
        self,
        job: Job,
        worker_id: str | None = None,
        message: str | None = None,
        active_at: datetime | None = _UNSET,
    ) -> Job | None:
        """
        Record a failed attempt and unlock the job.

        Increments ``attempts``, clears the lease, stores ``message`` as
        ``last_error`` and sets ``active_at`` so a retry can be delayed.
        Once attempts reach the configured maximum the job is exhausted
        and lock_next no longer returns it.

        Unlike release and complete this does not check ownership: a
        worker whose lease already expired can still report its failure.

        Args:
            job: The job that failed.
            worker_id: The reporting worker; only logged.
            message: Failure description.
            active_at: Earliest time the job may be retried. Defaults to
                the ``active_at`` on the caller's copy of ``job``.

        Returns:
            The updated job, or None if it no longer exists.
        """
        table = self.store.table
        if active_at is _UNSET:
            active_at = job.active_at
        active_at = as_utc(active_at)

        with get_tracer().start_as_current_span(SPAN_ERROR) as span:
            span.set_attribute("queue", self.name)
            span.set_attribute("job_id", str(job.id))

            updated = await self.store.update_one(
                table.c.id == job.id,
                {
                    "attempts": table.c.attempts + 1,
                    "last_error": message,
                    "locked_by": None,
                    "locked_at": None,
                    "keep_alive_at": None,
                    "active_at": active_at,
                },
            )

        if updated is None:
            return None

        self.metrics.record_job_failed(self.name)
        if updated.is_exhausted(self.max_attempts):
            logger.warning(
                f"Job exhausted after {updated.attempts} attempts",
                extra={"queue": self.name, "job_id": str(job.id), "error": message},
            )
        else:
            logger.info(
                "Job failed, queued for retry",
                extra={
                    "queue": self.name,
                    "job_id": str(job.id),
                    "worker_id": worker_id,
                    "attempts": updated.attempts,
                },
            )
        return updated

    async def cleanup(self) -> int:
        """
        Return jobs with stale leases to the queue.

        A lease is stale when its heartbeat is older than the configured
        timeout. Each one is released on behalf of its recorded owner, so a
        worker that finished in the meantime wins and the release is a
        no-op. Attempts are not changed.

        Returns:
            Number of jobs reclaimed.
        """
        table = self.store.table
        cutoff = utcnow() - self.timeout

        with get_tracer().start_as_current_span(SPAN_CLEANUP) as span:
            span.set_attribute("queue", self.name)

            stale = [job async for job in self.store.find(filters.is_stale(table, cutoff))]
            reclaimed = 0
            for job in stale:
                if await self.release(job, job.locked_by) is not None:
                    reclaimed += 1
                    logger.info(
                        "Reclaimed stale lease",
                        extra={
                            "queue": self.name,
                            "job_id": str(job.id),
                            "worker_id": job.locked_by,
                        },
                    )

            span.set_attribute("reclaimed", reclaimed)

        if reclaimed:
            self.metrics.record_lease_reclaimed(self.name, reclaimed)
        return reclaimed

    async def purge(self) -> PurgeResult:
        """
        Move exhausted, unlocked jobs to the archive table.

        See ``Archiver.purge``: originals are deleted even when copying
        some of them to the archive failed.
        """
        with get_tracer().start_as_current_span(SPAN_PURGE) as span:
            span.set_attribute("queue", self.name)
            return await self._archiver.purge()

    async def stats(self) -> QueueStats:
        """Counts of available, locked, exhausted, scheduled and all jobs."""
        return await self._stats.stats()

    async def remove(self, criteria: Criteria) -> int:
        """
        Delete every job matching ``criteria``, locked or not.

        Returns:
            Number of jobs deleted.
        """
        return await self.store.delete_many(
            filters.build_where(self.store.table, criteria)
        )

    async def flush(self) -> int:
        """Delete every job in the queue. Meant for tests and resets."""
        count = await self.store.delete_many(filters.build_where(self.store.table, None))
        logger.warning("Flushed queue", extra={"queue": self.name, "deleted": count})
        return count


async def create_queue(
    settings: Settings | None = None,
    metrics: MetricsCollector | None = None,
) -> Queue:
    """
    Build a queue on the shared engine, initializing it if needed.

    Creates the queue and archive tables. Call ``close_db()`` on shutdown.
    """
    settings = settings or get_settings()
    engine = await init_db(settings)
    return Queue(engine, settings, metrics=metrics)
