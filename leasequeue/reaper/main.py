"""
Reaper for stale leases and exhausted jobs.

The reaper runs periodically to return jobs whose worker stopped
heartbeating to the queue, and optionally to archive jobs that ran out
of attempts. This is what turns a crashed worker into a retried job.
"""

import asyncio
import logging
import signal

from leasequeue.config import Settings, get_settings
from leasequeue.db import close_db
from leasequeue.observability.logging import setup_logging
from leasequeue.observability.tracing import instrument_sqlalchemy, setup_tracing
from leasequeue.queue import Queue, create_queue
from leasequeue.types.job import PurgeResult

logger = logging.getLogger(__name__)


class Reaper:
    """
    Periodic maintenance loop for one queue.

    Each pass:
    1. Calls ``cleanup`` to release leases whose heartbeat is older than
       the queue's timeout
    2. Calls ``purge`` (when enabled) to archive exhausted jobs
    """

    def __init__(
        self,
        queue: Queue,
        interval_seconds: float | None = None,
        purge: bool | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            queue: The queue to maintain.
            interval_seconds: Seconds between passes.
            purge: Whether each pass also archives exhausted jobs.
        """
        settings = queue.settings
        self.queue = queue
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self.purge = settings.reaper_purge if purge is None else purge
        self._running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Run passes until stop() is called."""
        logger.info(
            f"Reaper starting with interval {self.interval}s",
            extra={"queue": self.queue.name, "purge": self.purge},
        )
        self._running = True
        self._stopped.clear()

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper after the current pass."""
        logger.info("Reaper stopping")
        self._running = False
        self._stopped.set()

    async def run_once(self) -> tuple[int, PurgeResult | None]:
        """
        Run a single pass (for testing or cron-style execution).

        Returns:
            Tuple of (leases reclaimed, purge result or None if purging is off).
        """
        reclaimed = await self.queue.cleanup()
        if reclaimed > 0:
            logger.info(f"Reclaimed {reclaimed} stale leases")

        purged = await self.queue.purge() if self.purge else None
        return reclaimed, purged


async def run_async(settings: Settings | None = None) -> None:
    """Run the reaper asynchronously."""
    settings = settings or get_settings()
    setup_logging(settings)
    setup_tracing(settings)
    queue = await create_queue(settings)
    instrument_sqlalchemy(queue.store.engine)

    reaper = Reaper(queue)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
