"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from leasequeue.constants import (
    METRIC_ARCHIVE_FAILURES,
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_FAILED,
    METRIC_JOBS_INSERTED,
    METRIC_JOBS_PURGED,
    METRIC_LEASE_ACQUIRED,
    METRIC_LEASE_RECLAIMED,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the queue.

    Collects metrics for:
    - Queue depth by state
    - Job inserts, completions and failures
    - Lease acquisition and reclamation
    - Archive purges and archive failures
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        # Queue depth gauge (by queue and count name)
        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs in the queue by state",
            ["queue", "state"],
            registry=self._registry,
        )

        self.jobs_inserted = Counter(
            METRIC_JOBS_INSERTED,
            "Total number of jobs inserted",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of jobs completed",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_failed = Counter(
            METRIC_JOBS_FAILED,
            "Total number of failures reported on jobs",
            ["queue"],
            registry=self._registry,
        )

        # Handler duration histogram, fed by the worker
        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["queue", "outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of leases acquired",
            ["queue"],
            registry=self._registry,
        )

        self.lease_reclaimed = Counter(
            METRIC_LEASE_RECLAIMED,
            "Total number of stale leases reclaimed",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_purged = Counter(
            METRIC_JOBS_PURGED,
            "Total number of exhausted jobs removed by purge",
            ["queue"],
            registry=self._registry,
        )

        self.archive_failures = Counter(
            METRIC_ARCHIVE_FAILURES,
            "Total number of exhausted jobs that failed to copy to the archive",
            ["queue"],
            registry=self._registry,
        )

    def record_job_inserted(self, queue: str) -> None:
        """Record a job insertion."""
        self.jobs_inserted.labels(queue=queue).inc()

    def record_job_completed(self, queue: str) -> None:
        """Record a job completion."""
        self.jobs_completed.labels(queue=queue).inc()

    def record_job_failed(self, queue: str) -> None:
        """Record a reported job failure."""
        self.jobs_failed.labels(queue=queue).inc()

    def record_job_duration(
        self,
        queue: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        """Record how long a handler ran."""
        self.job_duration.labels(queue=queue, outcome=outcome).observe(
            duration_seconds
        )

    def record_lease_acquired(self, queue: str) -> None:
        """Record lease acquisition."""
        self.lease_acquired.labels(queue=queue).inc()

    def record_lease_reclaimed(self, queue: str, count: int = 1) -> None:
        """Record reclaimed stale leases."""
        self.lease_reclaimed.labels(queue=queue).inc(count)

    def record_purge(self, queue: str, deleted: int, failed: int) -> None:
        """Record the outcome of an archive purge."""
        self.jobs_purged.labels(queue=queue).inc(deleted)
        self.archive_failures.labels(queue=queue).inc(failed)

    def update_queue_depth(self, queue: str, counts: dict[str, int]) -> None:
        """Publish the latest stats counts for a queue."""
        for state, value in counts.items():
            self.queue_depth.labels(queue=queue, state=state).set(value)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the shared metrics collector, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
