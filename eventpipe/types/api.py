"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from eventpipe.constants import BackoffKind, JobStatus
from eventpipe.types.job import JobRecord


class JobResponse(BaseModel):
    """Full job details response."""

    id: str
    name: str
    status: JobStatus
    attempt: int
    max_attempts: int
    backoff_kind: BackoffKind
    backoff_delay_ms: int
    topic: str
    partition: int
    offset: int
    event: dict[str, Any]
    lease_owner: str | None
    lease_expires_at: datetime | None
    scheduled_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None
    finished_at: datetime | None
    last_error: str | None

    @classmethod
    def from_record(cls, job: JobRecord) -> "JobResponse":
        return cls(
            id=job.job_id,
            name=job.name,
            status=job.status,
            attempt=job.attempt,
            max_attempts=job.max_attempts,
            backoff_kind=job.options.retry.kind,
            backoff_delay_ms=job.options.retry.base_delay_ms,
            topic=job.payload.topic,
            partition=job.payload.partition,
            offset=job.payload.offset,
            event=job.payload.event.to_wire(),
            lease_owner=job.lease_owner,
            lease_expires_at=job.lease_expires_at,
            scheduled_at=job.scheduled_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
            finished_at=job.finished_at,
            last_error=job.last_error,
        )


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    has_next: bool


class JobStatsResponse(BaseModel):
    """Job counts per state."""

    counts: dict[str, int]
    total: int


class RetryJobRequest(BaseModel):
    """Request body for re-queueing a terminally failed job."""

    reset_attempts: bool = Field(
        default=True, description="Reset attempt counter to 0"
    )


class RetryJobResponse(BaseModel):
    """Response body after re-queueing a job."""

    id: str
    status: JobStatus
    attempt: int
    message: str = "Job queued for retry"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime
