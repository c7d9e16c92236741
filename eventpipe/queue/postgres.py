"""
PostgreSQL implementation of the durable queue contract.
"""

import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from eventpipe.constants import DEFAULT_LEASE_DURATION_SECONDS, JobStatus
from eventpipe.db.connection import Database
from eventpipe.db.models import Job
from eventpipe.db.repository import JobRepository
from eventpipe.errors import BackendUnavailable
from eventpipe.queue.backoff import RetryPolicy
from eventpipe.types.event import JobPayload
from eventpipe.types.job import JobOptions, JobRecord

logger = logging.getLogger(__name__)


def to_record(job: Job) -> JobRecord:
    """Convert a Job row to the backend-neutral JobRecord."""
    return JobRecord(
        job_id=job.id,
        name=job.name,
        payload=JobPayload.model_validate(job.payload),
        status=JobStatus(job.status),
        attempt=job.attempt,
        options=JobOptions(
            name=job.name,
            retry=RetryPolicy(
                max_attempts=job.max_attempts,
                base_delay_ms=job.backoff_delay_ms,
                kind=job.backoff_kind,
            ),
            remove_on_complete=job.remove_on_complete,
            remove_on_fail=job.remove_on_fail,
        ),
        lease_owner=job.lease_owner,
        lease_expires_at=job.lease_expires_at,
        scheduled_at=job.scheduled_at,
        created_at=job.created_at,
        updated_at=job.updated_at,
        finished_at=job.finished_at,
        last_error=job.last_error,
    )


class PostgresJobQueue:
    """
    Durable job queue stored in the ``jobs`` table.

    Each operation runs in its own transaction. Transport failures are
    raised as BackendUnavailable.
    """

    def __init__(
        self,
        database: Database,
        lease_duration_seconds: int = DEFAULT_LEASE_DURATION_SECONDS,
    ):
        self._database = database
        self._lease_duration_seconds = lease_duration_seconds

    @asynccontextmanager
    async def _repository(self) -> AsyncGenerator[JobRepository]:
        try:
            async with self._database.session() as session:
                yield JobRepository(session, self._lease_duration_seconds)
        except (OperationalError, InterfaceError) as e:
            raise BackendUnavailable("Job store unavailable", cause=e) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise BackendUnavailable("Job store connection lost", cause=e) from e
            raise
        except (OSError, TimeoutError) as e:
            raise BackendUnavailable("Job store unreachable", cause=e) from e

    async def submit(self, job_id: str, payload: JobPayload, options: JobOptions) -> bool:
        async with self._repository() as repo:
            _, created = await repo.create_job(job_id, payload.to_storage(), options)
        return created

    async def claim(self, worker_id: str, limit: int) -> Sequence[JobRecord]:
        async with self._repository() as repo:
            jobs = await repo.claim_jobs(worker_id, limit)
        return [to_record(job) for job in jobs]

    async def complete(self, job_id: str, worker_id: str) -> bool:
        async with self._repository() as repo:
            job = await repo.complete_job(job_id, worker_id)
        return job is not None

    async def reschedule(self, job_id: str, worker_id: str, error: str, delay_ms: int) -> bool:
        async with self._repository() as repo:
            job = await repo.reschedule_job(job_id, worker_id, error, delay_ms)
        return job is not None

    async def fail(self, job_id: str, worker_id: str, error: str) -> bool:
        async with self._repository() as repo:
            job = await repo.fail_job(job_id, worker_id, error)
        return job is not None

    async def extend_leases(self, job_ids: Sequence[str], worker_id: str) -> int:
        async with self._repository() as repo:
            return await repo.extend_leases(job_ids, worker_id)

    async def recover_expired_leases(self) -> Sequence[str]:
        async with self._repository() as repo:
            return await repo.recover_expired_leases()

    async def get_job(self, job_id: str) -> JobRecord | None:
        async with self._repository() as repo:
            job = await repo.get_job(job_id)
        return to_record(job) if job else None

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[JobRecord], int]:
        async with self._repository() as repo:
            jobs, total = await repo.list_jobs(status=status, limit=limit, offset=offset)
        return [to_record(job) for job in jobs], total

    async def retry_failed(self, job_id: str, reset_attempts: bool = True) -> JobRecord | None:
        async with self._repository() as repo:
            job = await repo.retry_failed(job_id, reset_attempts=reset_attempts)
        return to_record(job) if job else None

    async def get_job_stats(self) -> dict[str, int]:
        async with self._repository() as repo:
            return await repo.get_job_stats()

    async def close(self) -> None:
        await self._database.close()
