"""
In-memory test doubles for the log broker and durable queue contracts.
"""

import asyncio
import json
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from eventpipe.constants import JobStatus
from eventpipe.errors import BackendUnavailable
from eventpipe.ingest.validator import validate
from eventpipe.types.event import IngestionRecord, JobPayload
from eventpipe.types.job import JobOptions, JobRecord


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryJobQueue:
    """
    Dict-backed queue with the same transition rules as the PostgreSQL one.

    ``history`` records (action, job_id, attempt, time) for every transition.
    """

    def __init__(self, lease_duration_seconds: int = 30):
        self.jobs: dict[str, JobRecord] = {}
        self.history: list[tuple[str, str, int, datetime]] = []
        self.closed = False
        self._lease = timedelta(seconds=lease_duration_seconds)
        self._lock = asyncio.Lock()

    def _log(self, action: str, job: JobRecord) -> None:
        self.history.append((action, job.job_id, job.attempt, utcnow()))

    def actions(self, job_id: str) -> list[str]:
        return [action for action, jid, _, _ in self.history if jid == job_id]

    def _owned(self, job_id: str, worker_id: str) -> JobRecord | None:
        job = self.jobs.get(job_id)
        if job and job.status == JobStatus.ACTIVE and job.lease_owner == worker_id:
            return job
        return None

    async def submit(self, job_id: str, payload: JobPayload, options: JobOptions) -> bool:
        async with self._lock:
            await asyncio.sleep(0)
            if job_id in self.jobs:
                return False
            now = utcnow()
            job = JobRecord(
                job_id=job_id,
                name=options.name,
                payload=payload,
                status=JobStatus.WAITING,
                attempt=0,
                options=options,
                scheduled_at=now,
                created_at=now,
                updated_at=now,
            )
            self.jobs[job_id] = job
            self._log("submitted", job)
            return True

    async def claim(self, worker_id: str, limit: int) -> Sequence[JobRecord]:
        async with self._lock:
            now = utcnow()
            due = sorted(
                (
                    job for job in self.jobs.values()
                    if job.status == JobStatus.WAITING and job.scheduled_at <= now
                ),
                key=lambda job: (job.scheduled_at, job.created_at),
            )[:limit]
            for job in due:
                job.status = JobStatus.ACTIVE
                job.attempt += 1
                job.lease_owner = worker_id
                job.lease_expires_at = now + self._lease
                job.updated_at = now
                self._log("claimed", job)
            return [replace(job) for job in due]

    async def complete(self, job_id: str, worker_id: str) -> bool:
        async with self._lock:
            job = self._owned(job_id, worker_id)
            if job is None:
                return False
            self._log("completed", job)
            if job.options.remove_on_complete:
                del self.jobs[job_id]
            else:
                job.status = JobStatus.COMPLETED
                job.finished_at = utcnow()
                job.lease_owner = job.lease_expires_at = None
            return True

    async def reschedule(self, job_id: str, worker_id: str, error: str, delay_ms: int) -> bool:
        async with self._lock:
            job = self._owned(job_id, worker_id)
            if job is None:
                return False
            job.status = JobStatus.WAITING
            job.last_error = error
            job.scheduled_at = utcnow() + timedelta(milliseconds=delay_ms)
            job.lease_owner = job.lease_expires_at = None
            self._log("rescheduled", job)
            return True

    async def fail(self, job_id: str, worker_id: str, error: str) -> bool:
        async with self._lock:
            job = self._owned(job_id, worker_id)
            if job is None:
                return False
            job.status = JobStatus.FAILED
            job.last_error = error
            job.finished_at = utcnow()
            job.lease_owner = job.lease_expires_at = None
            self._log("failed", job)
            if job.options.remove_on_fail:
                del self.jobs[job_id]
            return True

    async def extend_leases(self, job_ids: Sequence[str], worker_id: str) -> int:
        count = 0
        for job_id in job_ids:
            job = self._owned(job_id, worker_id)
            if job is not None:
                job.lease_expires_at = utcnow() + self._lease
                count += 1
        return count

    async def recover_expired_leases(self) -> list[str]:
        now = utcnow()
        recovered = []
        for job in self.jobs.values():
            if job.status != JobStatus.ACTIVE or job.lease_expires_at >= now:
                continue
            job.status = JobStatus.WAITING
            job.attempt = max(0, job.attempt - 1)
            job.scheduled_at = now
            job.lease_owner = job.lease_expires_at = None
            self._log("recovered", job)
            recovered.append(job.job_id)
        return recovered

    def expire_lease(self, job_id: str) -> None:
        """Simulate a crashed worker whose lease ran out."""
        self.jobs[job_id].lease_expires_at = utcnow() - timedelta(minutes=5)

    async def get_job(self, job_id: str) -> JobRecord | None:
        job = self.jobs.get(job_id)
        return replace(job) if job else None

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[JobRecord], int]:
        jobs = [
            job for job in sorted(self.jobs.values(), key=lambda j: j.created_at, reverse=True)
            if status is None or job.status == status
        ]
        return [replace(job) for job in jobs[offset:offset + limit]], len(jobs)

    async def retry_failed(self, job_id: str, reset_attempts: bool = True) -> JobRecord | None:
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.FAILED:
            return None
        job.status = JobStatus.WAITING
        job.scheduled_at = utcnow()
        job.finished_at = None
        job.last_error = None
        if reset_attempts:
            job.attempt = 0
        return replace(job)

    async def get_job_stats(self) -> dict[str, int]:
        stats: dict[str, int] = {}
        for job in self.jobs.values():
            stats[job.status.value] = stats.get(job.status.value, 0) + 1
        return stats

    async def close(self) -> None:
        self.closed = True


class UnavailableJobQueue(InMemoryJobQueue):
    """Queue whose submissions fail with BackendUnavailable ``failures`` times."""

    def __init__(self, failures: int | None = None):
        super().__init__()
        self.failures = failures
        self.submit_calls = 0

    async def submit(self, job_id: str, payload: JobPayload, options: JobOptions) -> bool:
        self.submit_calls += 1
        if self.failures is None or self.submit_calls <= self.failures:
            raise BackendUnavailable("connection refused")
        return await super().submit(job_id, payload, options)

    async def get_job_stats(self) -> dict[str, int]:
        if self.failures is None:
            raise BackendUnavailable("connection refused")
        return await super().get_job_stats()


class FakeLogBroker:
    """
    Scripted log broker.

    Returns the given batches in order, then empty fetches. ``drained`` is
    set once every batch has been handed out.
    """

    def __init__(
        self,
        batches: list[dict[int, list[IngestionRecord]]] | None = None,
        topic: str = "consume-event",
        on_commit: Callable[[int, int], None] | None = None,
    ):
        self.topic = topic
        self._batches = deque(batches or [])
        self._on_commit = on_commit
        self.committed: dict[int, int] = {}
        self.commit_log: list[tuple[int, int]] = []
        self.topic_ensured = False
        self.started = False
        self.stopped = False
        self.drained = asyncio.Event()

    async def ensure_topic(self) -> None:
        self.topic_ensured = True

    async def start(self) -> None:
        self.started = True

    async def fetch(self) -> dict[int, list[IngestionRecord]]:
        if self._batches:
            return self._batches.popleft()
        self.drained.set()
        await asyncio.sleep(0.001)
        return {}

    async def commit(self, partition: int, offset: int) -> None:
        if self._on_commit is not None:
            self._on_commit(partition, offset)
        previous = self.committed.get(partition)
        assert previous is None or offset >= previous, "offset moved backwards"
        self.committed[partition] = offset
        self.commit_log.append((partition, offset))

    async def stop(self) -> None:
        self.stopped = True


def event_dict(event_id: str = "e1", **overrides: Any) -> dict[str, Any]:
    event = {
        "eventId": event_id,
        "timestamp": 1700000000,
        "type": "order.created",
        "payload": {"orderId": 42},
    }
    event.update(overrides)
    return event


def make_record(
    offset: int,
    event: dict[str, Any] | bytes | None = None,
    partition: int = 0,
    topic: str = "consume-event",
) -> IngestionRecord:
    if event is None:
        event = event_dict(f"evt-{partition}-{offset}")
    raw = event if isinstance(event, bytes) else json.dumps(event).encode()
    return IngestionRecord(topic=topic, partition=partition, offset=offset, raw=raw)


def make_payload(event_id: str = "e1", offset: int = 0, partition: int = 0) -> JobPayload:
    record = make_record(offset, event_dict(event_id), partition=partition)
    return JobPayload.from_record(record, validate(record.raw))
