"""
Prometheus metrics collection.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)

from eventpipe.constants import (
    METRIC_ACTIVE_JOBS,
    METRIC_COMMITTED_OFFSET,
    METRIC_ENQUEUE_RETRIES,
    METRIC_EVENTS_CONSUMED,
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_LEASE_ACQUIRED,
    METRIC_LEASE_EXPIRED,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the event pipeline.
    
    Collects metrics for:
    - Records consumed from the log, by outcome
    - Enqueue retries and committed offsets
    - Job outcomes and execution duration
    - Active jobs and queue depth
    - Lease operations
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.
        
        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY
        
        # Records consumed (enqueued, duplicate, invalid)
        self.events_consumed = Counter(
            METRIC_EVENTS_CONSUMED,
            "Total number of log records consumed",
            ["topic", "outcome"],
            registry=self._registry,
        )
        
        self.enqueue_retries = Counter(
            METRIC_ENQUEUE_RETRIES,
            "Total number of enqueue retries after backend failures",
            ["topic"],
            registry=self._registry,
        )
        
        self.committed_offset = Gauge(
            METRIC_COMMITTED_OFFSET,
            "Last committed offset per partition",
            ["topic", "partition"],
            registry=self._registry,
        )
        
        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs per state",
            ["status"],
            registry=self._registry,
        )
        
        self.active_jobs = Gauge(
            METRIC_ACTIVE_JOBS,
            "Jobs currently executing in this process",
            registry=self._registry,
        )
        
        # completed, retried, failed
        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of job attempts by outcome",
            ["status"],
            registry=self._registry,
        )
        
        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )
        
        self.lease_expired = Counter(
            METRIC_LEASE_EXPIRED,
            "Total number of expired leases recovered",
            registry=self._registry,
        )
        
        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of jobs claimed",
            ["worker_id"],
            registry=self._registry,
        )

    def record_event_consumed(self, topic: str, outcome: str) -> None:
        """Record a consumed log record."""
        self.events_consumed.labels(topic=topic, outcome=outcome).inc()

    def record_job_submitted(self, topic: str, created: bool) -> None:
        """Record a submission to the queue."""
        self.record_event_consumed(topic, "enqueued" if created else "duplicate")

    def record_enqueue_retry(self, topic: str) -> None:
        self.enqueue_retries.labels(topic=topic).inc()

    def record_offset_committed(self, topic: str, partition: int, offset: int) -> None:
        self.committed_offset.labels(topic=topic, partition=str(partition)).set(offset)

    def record_job_finished(self, status: str, duration_seconds: float) -> None:
        """Record the outcome of one job attempt."""
        self.jobs_completed.labels(status=status).inc()
        self.job_duration.labels(status=status).observe(duration_seconds)

    def record_lease_expired(self, count: int = 1) -> None:
        """Record recovered leases."""
        self.lease_expired.inc(count)

    def record_lease_acquired(self, worker_id: str, count: int = 1) -> None:
        """Record claimed jobs."""
        self.lease_acquired.labels(worker_id=worker_id).inc(count)

    def update_queue_depth(self, stats: dict[str, int]) -> None:
        """Update job counts per state."""
        for status, count in stats.items():
            self.queue_depth.labels(status=status).set(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


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
    Get the metrics collector instance, creating it on first use.
    
    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
