"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from eventpipe.constants import JOB_NAME, JobStatus
from eventpipe.queue.backoff import RetryPolicy
from eventpipe.types.event import Event, JobPayload


class JobOptions(BaseModel):
    """
    Options attached to a job at submission time.
    """

    model_config = ConfigDict(frozen=True)

    name: str = JOB_NAME
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    remove_on_complete: bool = True
    remove_on_fail: bool = False


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None


@dataclass
class JobRecord:
    """
    A job as held by the durable queue.

    Decoupled from the storage model so the dispatch engine does not
    depend on a particular backend.
    """

    job_id: str
    name: str
    payload: JobPayload
    status: JobStatus
    attempt: int
    options: JobOptions
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None
    scheduled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    finished_at: datetime | None = None
    last_error: str | None = None

    @property
    def max_attempts(self) -> int:
        return self.options.retry.max_attempts


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains the event and job metadata for the handler.
    """

    job_id: str
    attempt: int
    max_attempts: int
    payload: JobPayload
    worker_id: str

    @property
    def event(self) -> Event:
        return self.payload.event

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)
