"""
Durable queue contract.

The storage engine guarantees atomic state transitions: a waiting job is
claimed by at most one dispatch engine at a time.
"""

from collections.abc import Sequence
from typing import Protocol

from eventpipe.constants import JobStatus
from eventpipe.types.event import JobPayload
from eventpipe.types.job import JobOptions, JobRecord


class JobQueue(Protocol):
    """Producer and consumer side of the durable job queue."""

    async def submit(
        self,
        job_id: str,
        payload: JobPayload,
        options: JobOptions,
    ) -> bool:
        """
        Create a waiting job unless one with ``job_id`` already exists.

        Returns:
            True if a job was created, False for a duplicate.
        """
        ...

    async def claim(self, worker_id: str, limit: int) -> Sequence[JobRecord]:
        """
        Atomically move up to ``limit`` due waiting jobs to active.

        Increments each claimed job's attempt count and leases it to ``worker_id``.
        """
        ...

    async def complete(self, job_id: str, worker_id: str) -> bool:
        """Mark an active job completed, or delete it if removed on complete."""
        ...

    async def reschedule(
        self,
        job_id: str,
        worker_id: str,
        error: str,
        delay_ms: int,
    ) -> bool:
        """Return an active job to waiting, due after ``delay_ms``."""
        ...

    async def fail(self, job_id: str, worker_id: str, error: str) -> bool:
        """Move an active job to terminal failure."""
        ...

    async def extend_leases(self, job_ids: Sequence[str], worker_id: str) -> int:
        """Push out lease expiry for jobs still owned by ``worker_id``."""
        ...

    async def recover_expired_leases(self) -> Sequence[str]:
        """Return active jobs with expired leases to waiting; returns their ids."""
        ...

    async def get_job(self, job_id: str) -> JobRecord | None:
        ...

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[JobRecord], int]:
        ...

    async def retry_failed(self, job_id: str, reset_attempts: bool = True) -> JobRecord | None:
        """Re-queue a terminally failed job on operator request."""
        ...

    async def get_job_stats(self) -> dict[str, int]:
        ...

    async def close(self) -> None:
        ...
