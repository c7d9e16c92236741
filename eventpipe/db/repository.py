"""
Job repository for database operations.
Implements the core data access patterns for the durable queue.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

from sqlalchemy import and_, delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from eventpipe.constants import DEFAULT_LEASE_DURATION_SECONDS, BackoffKind, JobStatus
from eventpipe.db.models import Job
from eventpipe.types.job import JobOptions

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRepository:
    """
    Repository for job database operations.
    
    Implements atomic operations for:
    - Job submission keyed by deduplication id
    - Claiming with FOR UPDATE SKIP LOCKED
    - Status transitions
    - Lease expiry handling
    """

    def __init__(
        self,
        session: AsyncSession,
        lease_duration_seconds: int = DEFAULT_LEASE_DURATION_SECONDS,
    ):
        """
        Initialize the repository with a database session.
        
        Args:
            session: The async database session.
            lease_duration_seconds: How long a claim is valid without a heartbeat.
        """
        self._session = session
        self._lease_duration = timedelta(seconds=lease_duration_seconds)

    async def create_job(
        self,
        job_id: str,
        payload: dict[str, Any],
        options: JobOptions,
    ) -> tuple[Job | None, bool]:
        """
        Create a new waiting job unless one with the same id exists.
        
        Uses INSERT ... ON CONFLICT DO NOTHING so concurrent duplicate
        submissions create a single row.
        
        Args:
            job_id: The deduplication key of the event.
            payload: The job payload snapshot.
            options: Retry and retention options.
            
        Returns:
            Tuple of (Job, created) where created is True if a new job was created.
            Job is None if the existing job was removed in the meantime.
        """
        now = _utcnow()
        stmt = insert(Job).values(
            id=job_id,
            name=options.name,
            payload=payload,
            status=JobStatus.WAITING,
            attempt=0,
            max_attempts=options.retry.max_attempts,
            backoff_kind=options.retry.kind,
            backoff_delay_ms=options.retry.base_delay_ms,
            remove_on_complete=options.remove_on_complete,
            remove_on_fail=options.remove_on_fail,
            scheduled_at=now,
        ).on_conflict_do_nothing(
            index_elements=[Job.id]
        ).returning(Job)
        
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()
        
        if job is not None:
            logger.info("Created new job", extra={"job_id": job_id})
            return job, True
        
        existing = await self.get_job(job_id)
        logger.info(
            "Returned existing job (idempotent)",
            extra={"job_id": job_id, "status": existing.status if existing else None},
        )
        return existing, False

    async def get_job(self, job_id: str) -> Job | None:
        """
        Get a job by ID.
        
        Args:
            job_id: The job id.
            
        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Job], int]:
        """
        List jobs with optional status filtering.
        
        Returns:
            Tuple of (jobs, total_count).
        """
        filters = []
        if status is not None:
            filters.append(Job.status == status)
        
        count_stmt = select(func.count()).select_from(Job).where(*filters)
        count_result = await self._session.execute(count_stmt)
        total = count_result.scalar() or 0
        
        stmt = (
            select(Job)
            .where(*filters)
            .order_by(Job.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        jobs = result.scalars().all()
        
        return jobs, total

    async def claim_jobs(self, worker_id: str, limit: int = 1) -> Sequence[Job]:
        """
        Claim due waiting jobs using FOR UPDATE SKIP LOCKED.
        
        This is the critical path for job distribution. Claimed jobs move
        to ACTIVE with their attempt counter incremented, in one statement.
        
        Args:
            worker_id: The worker identifier.
            limit: Maximum number of jobs to claim.
            
        Returns:
            List of claimed jobs.
        """
        now = _utcnow()
        
        # Raw SQL keeps the claim a single atomic statement
        sql = text("""
            UPDATE jobs
            SET 
                lease_owner = :worker_id,
                lease_expires_at = :lease_expires_at,
                status = :active_status,
                attempt = attempt + 1,
                updated_at = :now
            WHERE id IN (
                SELECT id FROM jobs
                WHERE status = :waiting_status
                AND (scheduled_at <= :now OR scheduled_at IS NULL)
                ORDER BY scheduled_at ASC NULLS FIRST, created_at ASC
                LIMIT :limit
                FOR UPDATE SKIP LOCKED
            )
            RETURNING *
        """)
        
        result = await self._session.execute(
            sql,
            {
                "worker_id": worker_id,
                "lease_expires_at": now + self._lease_duration,
                "active_status": JobStatus.ACTIVE.value,
                "waiting_status": JobStatus.WAITING.value,
                "now": now,
                "limit": limit,
            }
        )
        
        rows = result.fetchall()
        
        if rows:
            logger.debug(
                f"Claimed {len(rows)} jobs",
                extra={"worker_id": worker_id, "job_count": len(rows)}
            )
        
        return [
            Job(
                id=row.id,
                name=row.name,
                payload=row.payload,
                status=JobStatus(row.status),
                attempt=row.attempt,
                max_attempts=row.max_attempts,
                backoff_kind=BackoffKind(row.backoff_kind),
                backoff_delay_ms=row.backoff_delay_ms,
                remove_on_complete=row.remove_on_complete,
                remove_on_fail=row.remove_on_fail,
                lease_owner=row.lease_owner,
                lease_expires_at=row.lease_expires_at,
                scheduled_at=row.scheduled_at,
                created_at=row.created_at,
                updated_at=row.updated_at,
                finished_at=row.finished_at,
                last_error=row.last_error,
            )
            for row in rows
        ]

    def _owned_active(self, job_id: str, worker_id: str):
        return and_(
            Job.id == job_id,
            Job.status == JobStatus.ACTIVE,
            Job.lease_owner == worker_id,
        )

    async def complete_job(self, job_id: str, worker_id: str) -> Job | None:
        """
        Mark job as completed, deleting it if it is removed on complete.
        
        Args:
            job_id: The job id.
            worker_id: The worker identifier (must match lease owner).
            
        Returns:
            The completed Job or None if the transition failed.
        """
        now = _utcnow()
        stmt = (
            update(Job)
            .where(self._owned_active(job_id, worker_id))
            .values(
                status=JobStatus.COMPLETED,
                finished_at=now,
                updated_at=now,
                lease_owner=None,
                lease_expires_at=None,
                last_error=None,
            )
            .returning(Job)
        )
        
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()
        
        if job is not None and job.remove_on_complete:
            await self._session.execute(delete(Job).where(Job.id == job_id))
        
        return job

    async def reschedule_job(
        self,
        job_id: str,
        worker_id: str,
        error: str,
        delay_ms: int,
    ) -> Job | None:
        """
        Return a failed job to WAITING, eligible again after ``delay_ms``.
        
        Returns:
            Updated Job or None if the transition failed.
        """
        now = _utcnow()
        stmt = (
            update(Job)
            .where(self._owned_active(job_id, worker_id))
            .values(
                status=JobStatus.WAITING,
                last_error=error,
                scheduled_at=now + timedelta(milliseconds=delay_ms),
                updated_at=now,
                lease_owner=None,
                lease_expires_at=None,
            )
            .returning(Job)
        )
        
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def fail_job(self, job_id: str, worker_id: str, error: str) -> Job | None:
        """
        Move a job to terminal FAILED, keeping it unless removed on fail.
        
        Returns:
            Updated Job or None if the transition failed.
        """
        now = _utcnow()
        stmt = (
            update(Job)
            .where(self._owned_active(job_id, worker_id))
            .values(
                status=JobStatus.FAILED,
                last_error=error,
                finished_at=now,
                updated_at=now,
                lease_owner=None,
                lease_expires_at=None,
            )
            .returning(Job)
        )
        
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()
        
        if job is not None and job.remove_on_fail:
            await self._session.execute(delete(Job).where(Job.id == job_id))
        
        return job

    async def retry_failed(
        self,
        job_id: str,
        reset_attempts: bool = True,
    ) -> Job | None:
        """
        Re-queue a terminally failed job.
        
        Args:
            job_id: The job id.
            reset_attempts: Whether to reset the attempt counter.
            
        Returns:
            Updated Job or None if not found or not failed.
        """
        now = _utcnow()
        values = {
            "status": JobStatus.WAITING,
            "updated_at": now,
            "scheduled_at": now,
            "finished_at": None,
            "last_error": None,
        }
        
        if reset_attempts:
            values["attempt"] = 0
        
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status == JobStatus.FAILED,
                )
            )
            .values(**values)
            .returning(Job)
        )
        
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()
        
        if job:
            logger.info("Failed job re-queued", extra={"job_id": job_id})
        
        return job

    async def recover_expired_leases(self) -> list[str]:
        """
        Recover active jobs whose lease expired (crashed or abandoned worker).

        Every expired job goes back to WAITING, due immediately. The
        interrupted attempt produced no handler outcome, so it is not
        charged: the attempt counter is rolled back by one.

        Returns:
            Ids of the recovered jobs.
        """
        now = _utcnow()
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.status == JobStatus.ACTIVE,
                    Job.lease_expires_at < now,
                )
            )
            .values(
                status=JobStatus.WAITING,
                attempt=func.greatest(Job.attempt - 1, 0),
                scheduled_at=now,
                updated_at=now,
                lease_owner=None,
                lease_expires_at=None,
            )
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        job_ids = list(result.scalars().all())

        if job_ids:
            logger.info(
                f"Recovered {len(job_ids)} jobs with expired leases",
                extra={"job_ids": job_ids},
            )

        return job_ids

    async def extend_leases(self, job_ids: Sequence[str], worker_id: str) -> int:
        """
        Extend the lease on jobs still owned by a worker (heartbeat).
        
        Returns:
            Number of leases extended.
        """
        if not job_ids:
            return 0
        
        now = _utcnow()
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id.in_(list(job_ids)),
                    Job.lease_owner == worker_id,
                    Job.status == JobStatus.ACTIVE,
                )
            )
            .values(
                lease_expires_at=now + self._lease_duration,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        
        result = await self._session.execute(stmt)
        return result.rowcount

    async def get_job_stats(self) -> dict[str, int]:
        """
        Get job counts by status.
        
        Returns:
            Dictionary of status -> count.
        """
        stmt = select(Job.status, func.count()).group_by(Job.status)
        result = await self._session.execute(stmt)
        return {status.value: count for status, count in result.all()}
