"""
Enqueue gateway.

Producer side of the durable queue: submit a job under its deduplication
key with the default retry policy attached.
"""

import logging
from dataclasses import dataclass

from eventpipe.config import Settings, get_settings
from eventpipe.constants import SPAN_SUBMIT_JOB
from eventpipe.errors import EnqueueError
from eventpipe.observability.metrics import MetricsCollector, get_metrics
from eventpipe.observability.tracing import get_tracer
from eventpipe.queue.backend import JobQueue
from eventpipe.queue.backoff import RetryPolicy
from eventpipe.types.event import JobPayload
from eventpipe.types.job import JobOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnqueueAck:
    """Confirmation that a job for ``job_id`` is durably queued."""

    job_id: str
    created: bool

    @property
    def duplicate(self) -> bool:
        return not self.created


def default_job_options(settings: Settings | None = None) -> JobOptions:
    """Build the job options every submission gets unless overridden."""
    settings = settings or get_settings()
    return JobOptions(
        retry=RetryPolicy(
            max_attempts=settings.default_max_attempts,
            base_delay_ms=settings.default_backoff_delay_ms,
            kind=settings.default_backoff_kind,
        ),
        remove_on_complete=settings.remove_on_complete,
        remove_on_fail=settings.remove_on_fail,
    )


class EnqueueGateway:
    """
    Idempotent job submission.

    A second submission with the same ``job_id`` while a job exists
    reports success without creating another job.
    """

    def __init__(
        self,
        queue: JobQueue,
        default_options: JobOptions | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._queue = queue
        self.default_options = default_options or default_job_options()
        self._metrics = metrics or get_metrics()

    async def submit(
        self,
        job_id: str,
        payload: JobPayload,
        options: JobOptions | None = None,
    ) -> EnqueueAck:
        """
        Submit a job.

        Args:
            job_id: Deduplication key of the event.
            payload: Event plus provenance.
            options: Retry options; defaults to the gateway's defaults.

        Returns:
            EnqueueAck once the job is durably stored.

        Raises:
            EnqueueError: If ``job_id`` is empty.
            BackendUnavailable: On transport or storage failure.
        """
        if not job_id:
            raise EnqueueError("Job id must not be empty")

        with get_tracer().start_as_current_span(SPAN_SUBMIT_JOB) as span:
            span.set_attribute("job_id", job_id)
            created = await self._queue.submit(job_id, payload, options or self.default_options)
            span.set_attribute("created", created)

        self._metrics.record_job_submitted(payload.topic, created)
        return EnqueueAck(job_id=job_id, created=created)
