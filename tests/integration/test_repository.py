"""
Integration tests for the job repository.

Require PostgreSQL; skipped when it is not reachable.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update

from eventpipe.constants import JobStatus
from eventpipe.db import Database, Job
from eventpipe.db.repository import JobRepository, _utcnow
from eventpipe.queue.backoff import RetryPolicy
from eventpipe.types.job import JobOptions
from tests.fakes import make_payload


def storage(event_id: str) -> dict:
    return make_payload(event_id).to_storage()


async def expire_lease(database: Database, job_id: str) -> None:
    async with database.session() as session:
        await session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(lease_expires_at=_utcnow() - timedelta(minutes=5))
        )


class TestJobRepository:
    """Tests for JobRepository."""

    @pytest.mark.asyncio
    async def test_create_job(self, database: Database):
        async with database.session() as session:
            job, created = await JobRepository(session).create_job(
                "e1", storage("e1"), JobOptions()
            )

        assert created is True
        assert job.id == "e1"
        assert job.status == JobStatus.WAITING
        assert job.attempt == 0
        assert job.max_attempts == 3
        assert job.name == "process-event"
        assert job.payload["event"]["eventId"] == "e1"

    @pytest.mark.asyncio
    async def test_create_job_idempotent(self, database: Database):
        async with database.session() as session:
            repo = JobRepository(session)
            first, created1 = await repo.create_job("e1", storage("e1"), JobOptions())
            second, created2 = await repo.create_job("e1", storage("e1"), JobOptions())

        assert created1 is True
        assert created2 is False
        assert second.id == first.id

    @pytest.mark.asyncio
    async def test_concurrent_creates_single_row(self, database: Database):
        async def submit() -> bool:
            async with database.session() as session:
                _, created = await JobRepository(session).create_job(
                    "same", storage("same"), JobOptions()
                )
            return created

        results = await asyncio.gather(*(submit() for _ in range(10)))

        assert sum(results) == 1
        async with database.session() as session:
            jobs, total = await JobRepository(session).list_jobs()
        assert total == 1

    @pytest.mark.asyncio
    async def test_claim_increments_attempt(self, database: Database):
        async with database.session() as session:
            repo = JobRepository(session, lease_duration_seconds=30)
            await repo.create_job("e1", storage("e1"), JobOptions())

        async with database.session() as session:
            jobs = await JobRepository(session).claim_jobs("worker-1", limit=5)

        assert len(jobs) == 1
        assert jobs[0].status == JobStatus.ACTIVE
        assert jobs[0].attempt == 1
        assert jobs[0].lease_owner == "worker-1"
        assert jobs[0].lease_expires_at > _utcnow()

    @pytest.mark.asyncio
    async def test_claim_respects_limit_and_schedule(self, database: Database):
        async with database.session() as session:
            repo = JobRepository(session)
            for i in range(3):
                await repo.create_job(f"e{i}", storage(f"e{i}"), JobOptions())

        async with database.session() as session:
            first = await JobRepository(session).claim_jobs("worker-1", limit=2)
        async with database.session() as session:
            second = await JobRepository(session).claim_jobs("worker-2", limit=2)
        async with database.session() as session:
            third = await JobRepository(session).claim_jobs("worker-3", limit=2)

        assert len(first) == 2
        assert len(second) == 1
        assert third == []
        assert {j.id for j in first} | {j.id for j in second} == {"e0", "e1", "e2"}

    @pytest.mark.asyncio
    async def test_concurrent_claims_never_overlap(self, database: Database):
        async with database.session() as session:
            repo = JobRepository(session)
            for i in range(10):
                await repo.create_job(f"e{i}", storage(f"e{i}"), JobOptions())

        async def claim(worker_id: str) -> list[str]:
            async with database.session() as session:
                jobs = await JobRepository(session).claim_jobs(worker_id, limit=4)
            return [job.id for job in jobs]

        claimed = await asyncio.gather(*(claim(f"worker-{i}") for i in range(5)))
        flat = [job_id for batch in claimed for job_id in batch]

        assert len(flat) == len(set(flat)) == 10

    @pytest.mark.asyncio
    async def test_complete_removes_job(self, database: Database):
        async with database.session() as session:
            await JobRepository(session).create_job("e1", storage("e1"), JobOptions())
        async with database.session() as session:
            await JobRepository(session).claim_jobs("worker-1")
        async with database.session() as session:
            completed = await JobRepository(session).complete_job("e1", "worker-1")

        assert completed is not None
        async with database.session() as session:
            assert await JobRepository(session).get_job("e1") is None

    @pytest.mark.asyncio
    async def test_complete_requires_lease_owner(self, database: Database):
        async with database.session() as session:
            await JobRepository(session).create_job(
                "e1", storage("e1"), JobOptions(remove_on_complete=False)
            )
        async with database.session() as session:
            await JobRepository(session).claim_jobs("worker-1")
        async with database.session() as session:
            assert await JobRepository(session).complete_job("e1", "worker-2") is None
        async with database.session() as session:
            job = await JobRepository(session).complete_job("e1", "worker-1")

        assert job.status == JobStatus.COMPLETED
        assert job.finished_at is not None

    @pytest.mark.asyncio
    async def test_reschedule_delays_next_claim(self, database: Database):
        async with database.session() as session:
            await JobRepository(session).create_job("e1", storage("e1"), JobOptions())
        async with database.session() as session:
            await JobRepository(session).claim_jobs("worker-1")
        async with database.session() as session:
            job = await JobRepository(session).reschedule_job(
                "e1", "worker-1", "boom", delay_ms=60_000
            )

        assert job.status == JobStatus.WAITING
        assert job.last_error == "boom"
        async with database.session() as session:
            assert await JobRepository(session).claim_jobs("worker-1") == []

    @pytest.mark.asyncio
    async def test_fail_retains_job(self, database: Database):
        async with database.session() as session:
            await JobRepository(session).create_job("e1", storage("e1"), JobOptions())
        async with database.session() as session:
            await JobRepository(session).claim_jobs("worker-1")
        async with database.session() as session:
            await JobRepository(session).fail_job("e1", "worker-1", "fatal")
        async with database.session() as session:
            job = await JobRepository(session).get_job("e1")
            stats = await JobRepository(session).get_job_stats()

        assert job.status == JobStatus.FAILED
        assert job.last_error == "fatal"
        assert stats == {"failed": 1}

    @pytest.mark.asyncio
    async def test_retry_failed(self, database: Database):
        async with database.session() as session:
            await JobRepository(session).create_job("e1", storage("e1"), JobOptions())
        async with database.session() as session:
            await JobRepository(session).claim_jobs("worker-1")
            await JobRepository(session).fail_job("e1", "worker-1", "fatal")
        async with database.session() as session:
            job = await JobRepository(session).retry_failed("e1")

        assert job.status == JobStatus.WAITING
        assert job.attempt == 0
        assert job.last_error is None

    @pytest.mark.asyncio
    async def test_recover_expired_leases(self, database: Database):
        options = JobOptions(retry=RetryPolicy(max_attempts=1))
        async with database.session() as session:
            repo = JobRepository(session)
            await repo.create_job("retryable", storage("retryable"), JobOptions())
            await repo.create_job("exhausted", storage("exhausted"), options)
        async with database.session() as session:
            await JobRepository(session).claim_jobs("crashed", limit=2)

        await expire_lease(database, "retryable")
        await expire_lease(database, "exhausted")

        async with database.session() as session:
            recovered = await JobRepository(session).recover_expired_leases()
        async with database.session() as session:
            retryable = await JobRepository(session).get_job("retryable")
            exhausted = await JobRepository(session).get_job("exhausted")

        assert sorted(recovered) == ["exhausted", "retryable"]
        for job in (retryable, exhausted):
            assert job.status == JobStatus.WAITING
            assert job.attempt == 0
            assert job.lease_owner is None
            assert job.finished_at is None

    @pytest.mark.asyncio
    async def test_extend_leases(self, database: Database):
        async with database.session() as session:
            await JobRepository(session).create_job("e1", storage("e1"), JobOptions())
        async with database.session() as session:
            await JobRepository(session).claim_jobs("worker-1")

        await expire_lease(database, "e1")

        async with database.session() as session:
            assert await JobRepository(session).extend_leases(["e1"], "worker-2") == 0
            assert await JobRepository(session).extend_leases(["e1"], "worker-1") == 1
        async with database.session() as session:
            assert await JobRepository(session).recover_expired_leases() == []
