"""
Worker process for executing jobs.

The worker polls the queue, runs each claimed job through its registered
handler while keeping the lease alive, and reports the outcome back.
"""

import asyncio
import contextlib
import logging
import os
import signal
import time
from datetime import timedelta

from leasequeue.config import Settings, get_settings
from leasequeue.constants import SPAN_EXECUTE_JOB
from leasequeue.db import close_db
from leasequeue.observability.logging import bind_context, clear_context, setup_logging
from leasequeue.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing
from leasequeue.queue import Queue, create_queue
from leasequeue.types.job import Job, JobContext, utcnow
from leasequeue.worker.handlers import execute_job

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that polls for and executes jobs one at a time.

    Features:
    - Claims with ``lock_next``; sleeps ``poll_interval`` when nothing is
      eligible
    - Heartbeats the lease while the handler runs
    - ``complete`` on success, ``error`` with a linear retry delay on failure
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        queue: Queue,
        worker_id: str | None = None,
        poll_interval: float | None = None,
        heartbeat_interval: float | None = None,
        retry_delay: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            queue: The queue to pull from.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            poll_interval: Seconds between polls when the queue is empty.
            heartbeat_interval: Seconds between lease heartbeats. Must stay
                well below the queue timeout.
            retry_delay: Base delay before a failed job is retried; the
                n-th failure waits n times this long.
        """
        settings = queue.settings

        self.queue = queue
        self.worker_id = (
            worker_id
            or settings.worker_id
            or f"{os.uname().nodename}-{os.getpid()}"
        )
        self.poll_interval = poll_interval or settings.worker_poll_interval_seconds
        self.heartbeat_interval = (
            heartbeat_interval or settings.worker_heartbeat_interval_seconds
        )
        self.retry_delay = (
            settings.worker_retry_delay_seconds if retry_delay is None else retry_delay
        )

        self._running = False
        self._stopped = asyncio.Event()
        self._metrics = queue.metrics

    async def start(self) -> None:
        """Poll and execute jobs until stop() is called."""
        bind_context(worker_id=self.worker_id)
        logger.info("Worker starting", extra={"queue": self.queue.name})
        self._running = True
        self._stopped.clear()

        while self._running:
            try:
                processed = await self.run_once()
            except Exception as e:
                logger.exception(f"Error in worker loop: {e}")
                processed = False

            if not processed:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(
                        self._stopped.wait(), timeout=self.poll_interval
                    )

        logger.info("Worker stopped")
        clear_context()

    async def stop(self) -> None:
        """Stop the worker after the current job."""
        logger.info("Worker stopping")
        self._running = False
        self._stopped.set()

    async def run_once(self) -> bool:
        """
        Claim and execute at most one job.

        Returns:
            True if a job was claimed, False if the queue had nothing eligible.
        """
        job = await self.queue.lock_next(self.worker_id)
        if job is None:
            return False

        await self._execute_job(job)
        return True

    async def _execute_job(self, job: Job) -> None:
        start_time = time.monotonic()
        context = JobContext(
            job_id=job.id,
            attempt=job.attempts + 1,
            max_attempts=self.queue.max_attempts,
            payload=job.payload,
            locked_by=self.worker_id,
            locked_at=job.locked_at,
        )

        heartbeat = asyncio.create_task(self._heartbeat_loop(job))
        try:
            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", str(job.id))
                span.set_attribute("attempt", context.attempt)
                result = await execute_job(context)
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

        duration = time.monotonic() - start_time

        if result.success:
            if await self.queue.complete(job, self.worker_id) is None:
                logger.warning(
                    "Job finished after its lease was lost; result discarded",
                    extra={"job_id": str(job.id)},
                )
                self._metrics.record_job_duration(self.queue.name, "lease_lost", duration)
                return
            self._metrics.record_job_duration(self.queue.name, "succeeded", duration)
            return

        retry_at = utcnow() + timedelta(seconds=self.retry_delay * context.attempt)
        await self.queue.error(job, self.worker_id, result.error, active_at=retry_at)
        self._metrics.record_job_duration(self.queue.name, "failed", duration)

    async def _heartbeat_loop(self, job: Job) -> None:
        """
        Keep the lease on ``job`` fresh while its handler runs.

        Stops on its own once the lease is gone, which means cleanup
        already handed the job to someone else.
        """
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                renewed = await self.queue.heartbeat(job, self.worker_id)
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")
                continue

            if renewed is None:
                logger.warning(
                    "Lease lost while job was running",
                    extra={"job_id": str(job.id)},
                )
                return


async def run_async(settings: Settings | None = None) -> None:
    """Run the worker asynchronously."""
    settings = settings or get_settings()
    setup_logging(settings)
    setup_tracing(settings)
    queue = await create_queue(settings)
    instrument_sqlalchemy(queue.store.engine)

    worker = Worker(queue)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
