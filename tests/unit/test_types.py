"""
Unit tests for job types.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from leasequeue.constants import JobState
from leasequeue.types.job import Job, QueueStats, utcnow


def make_job(**fields) -> Job:
    return Job(id=uuid4(), created_at=utcnow(), payload={"msg": "hi"}, **fields)


class TestJob:
    """Tests for the Job model."""

    def test_pending(self):
        """Test a fresh job."""
        job = make_job()

        assert job.state(3) == JobState.PENDING
        assert job.is_eligible(3)

    def test_locked(self):
        """Test that a lease wins over exhaustion."""
        job = make_job(locked_by="w", locked_at=utcnow(), attempts=3)

        assert job.state(3) == JobState.LOCKED
        assert not job.is_eligible(3)

    def test_exhausted(self):
        """Test a job out of attempts."""
        job = make_job(attempts=3)

        assert job.state(3) == JobState.EXHAUSTED
        assert job.state(4) == JobState.PENDING

    def test_not_yet_active(self):
        """Test that a future active_at is not eligible."""
        job = make_job(active_at=utcnow() + timedelta(minutes=1))

        assert job.state(3) == JobState.PENDING
        assert not job.is_eligible(3)

    def test_payload_access(self):
        """Test reading payload values."""
        job = make_job()

        assert job["msg"] == "hi"
        assert job.get("missing", 1) == 1
        with pytest.raises(KeyError):
            job["missing"]


class TestQueueStats:
    """Tests for QueueStats."""

    def test_as_dict(self):
        """Test the headline counts."""
        stats = QueueStats(available=2, locked=1, errors=1, total=4, scheduled=0)

        assert stats.as_dict() == {"locked": 1, "available": 2, "errors": 1, "total": 4}
