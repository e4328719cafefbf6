"""
leasequeue

A persistent, priority-ordered job queue on a shared SQL table, with
lease-based claiming, heartbeat renewal, stale-lease recovery, bounded
retries and archiving of exhausted jobs. Worker processes pull jobs
directly from the table; there is no broker process.
"""

__version__ = "1.0.0"

from leasequeue.config import Settings, get_settings  # noqa: E402
from leasequeue.constants import JobState  # noqa: E402
from leasequeue.queue import Queue, create_queue  # noqa: E402
from leasequeue.types.job import Job, PurgeResult, QueueStats  # noqa: E402

__all__ = [
    "Queue",
    "create_queue",
    "Job",
    "JobState",
    "QueueStats",
    "PurgeResult",
    "Settings",
    "get_settings",
]
