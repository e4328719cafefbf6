"""
Type definitions for the queue.
"""

from leasequeue.types.job import (
    Job,
    JobContext,
    JobResult,
    PurgeResult,
    QueueStats,
    utcnow,
)

__all__ = [
    "Job",
    "JobContext",
    "JobResult",
    "PurgeResult",
    "QueueStats",
    "utcnow",
]
