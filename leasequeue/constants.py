"""
Queue constants.
Centralized location for all constant values used across the package.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states, derived from a job's control fields.

    State transitions:
    - PENDING -> LOCKED (lock_next)
    - LOCKED -> (deleted) (complete)
    - LOCKED -> PENDING (error with attempts left, or cleanup of a stale lease)
    - LOCKED -> EXHAUSTED (error on the last attempt)
    - EXHAUSTED -> (archived) (purge)
    """

    PENDING = "pending"
    LOCKED = "locked"
    EXHAUSTED = "exhausted"


# Default values
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./leasequeue.db"
DEFAULT_COLLECTION = "mongo_queue"
DEFAULT_ATTEMPTS = 3
DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_PRIORITY = 0
ARCHIVE_SUFFIX = "_purged"

# Control fields a caller may set at insert time, with their defaults.
DEFAULT_INSERT: dict[str, object] = {
    "priority": DEFAULT_PRIORITY,
    "attempts": 0,
    "locked_by": None,
    "locked_at": None,
    "keep_alive_at": None,
    "active_at": None,
    "last_error": None,
}


# Metrics names
METRIC_QUEUE_DEPTH = "leasequeue_depth"
METRIC_JOBS_INSERTED = "leasequeue_jobs_inserted_total"
METRIC_JOBS_COMPLETED = "leasequeue_jobs_completed_total"
METRIC_JOBS_FAILED = "leasequeue_jobs_failed_total"
METRIC_JOB_DURATION = "leasequeue_job_duration_seconds"
METRIC_LEASE_ACQUIRED = "leasequeue_lease_acquired_total"
METRIC_LEASE_RECLAIMED = "leasequeue_lease_reclaimed_total"
METRIC_JOBS_PURGED = "leasequeue_jobs_purged_total"
METRIC_ARCHIVE_FAILURES = "leasequeue_archive_failures_total"

# Trace span names
SPAN_LOCK_NEXT = "lock_next"
SPAN_COMPLETE = "complete"
SPAN_ERROR = "error"
SPAN_CLEANUP = "cleanup"
SPAN_PURGE = "purge"
SPAN_EXECUTE_JOB = "execute_job"
