"""
Job-related type definitions.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping
from uuid import UUID

from pydantic import BaseModel, Field

from leasequeue.constants import DEFAULT_PRIORITY, JobState


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form every column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Any) -> Any:
    """
    Convert an aware datetime to naive UTC.

    Naive datetimes are taken to be UTC already and, like any other
    value, pass through unchanged.
    """
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Job(BaseModel):
    """
    A queued unit of work.

    Control fields are owned by the queue; ``payload`` is the caller's
    data and is never interpreted. Instances are plain copies of a row:
    mutating one does not touch the store.
    """

    id: UUID
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = DEFAULT_PRIORITY
    attempts: int = 0
    locked_by: str | None = None
    locked_at: datetime | None = None
    keep_alive_at: datetime | None = None
    active_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> "Job":
        """Build a Job from a SQLAlchemy result row."""
        return cls.model_validate(dict(row._mapping))

    @property
    def is_locked(self) -> bool:
        """Check if the job is currently leased."""
        return self.locked_by is not None

    def is_exhausted(self, max_attempts: int) -> bool:
        """Check if the job has used up its attempts."""
        return self.attempts >= max_attempts

    def is_eligible(self, max_attempts: int, now: datetime | None = None) -> bool:
        """Check if lock_next could hand this job out right now."""
        now = now or utcnow()
        return (
            not self.is_locked
            and not self.is_exhausted(max_attempts)
            and (self.active_at is None or self.active_at <= now)
        )

    def state(self, max_attempts: int) -> JobState:
        """Derive the lifecycle state from the control fields."""
        if self.is_locked:
            return JobState.LOCKED
        if self.is_exhausted(max_attempts):
            return JobState.EXHAUSTED
        return JobState.PENDING

    def __getitem__(self, key: str) -> Any:
        return self.payload[key]

    def get(self, key: str, default: Any = None) -> Any:
        """Read a payload value."""
        return self.payload.get(key, default)


class QueueStats(BaseModel):
    """
    Aggregate counts over the queue.

    ``available`` counts jobs lock_next could return now; ``scheduled``
    counts pending jobs whose ``active_at`` is still in the future.
    """

    available: int = 0
    locked: int = 0
    errors: int = 0
    total: int = 0
    scheduled: int = 0

    def as_dict(self) -> Mapping[str, int]:
        """The four headline counts."""
        return self.model_dump(include={"available", "locked", "errors", "total"})


class PurgeResult(BaseModel):
    """Outcome of one archiver pass."""

    archived: int = 0
    failed: int = 0
    deleted: int = 0


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata and utilities for the handler.
    """

    job_id: UUID
    attempt: int
    max_attempts: int
    payload: dict[str, Any]
    locked_by: str
    locked_at: datetime | None

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)
