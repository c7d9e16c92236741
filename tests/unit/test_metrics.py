"""
Unit tests for metrics collection.
"""

from eventpipe.observability.metrics import MetricsCollector


class TestMetricsCollector:
    """Tests for the Prometheus collector."""

    def test_event_outcomes(self, metrics: MetricsCollector):
        metrics.record_job_submitted("consume-event", created=True)
        metrics.record_job_submitted("consume-event", created=False)
        metrics.record_event_consumed("consume-event", "invalid")

        for outcome in ("enqueued", "duplicate", "invalid"):
            assert metrics._registry.get_sample_value(
                "events_consumed_total", {"topic": "consume-event", "outcome": outcome}
            ) == 1

    def test_committed_offset(self, metrics: MetricsCollector):
        metrics.record_offset_committed("consume-event", 2, 41)

        assert metrics._registry.get_sample_value(
            "committed_offset", {"topic": "consume-event", "partition": "2"}
        ) == 41

    def test_job_finished(self, metrics: MetricsCollector):
        metrics.record_job_finished("completed", 0.3)

        assert metrics._registry.get_sample_value(
            "jobs_completed_total", {"status": "completed"}
        ) == 1
        assert metrics._registry.get_sample_value(
            "job_duration_seconds_count", {"status": "completed"}
        ) == 1

    def test_queue_depth(self, metrics: MetricsCollector):
        metrics.update_queue_depth({"waiting": 4, "failed": 1})

        assert metrics._registry.get_sample_value("job_queue_depth", {"status": "waiting"}) == 4
        assert metrics._registry.get_sample_value("job_queue_depth", {"status": "failed"}) == 1

    def test_exposition(self, metrics: MetricsCollector):
        metrics.record_lease_acquired("worker-1", 2)

        body = metrics.get_metrics().decode()

        assert 'lease_acquired_total{worker_id="worker-1"} 2.0' in body
        assert metrics.get_content_type().startswith("text/plain")
