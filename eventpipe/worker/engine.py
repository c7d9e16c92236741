"""
Dispatch engine.

Claims due jobs from the durable queue, runs at most ``concurrency`` of
them at a time, and turns each handler outcome into a state transition:
completed, rescheduled with backoff, or terminally failed.
"""

import asyncio
import logging
import os
import time

from eventpipe.config import get_settings
from eventpipe.constants import (
    LOG_JOB_COMPLETED,
    LOG_JOB_FAILED,
    LOG_JOB_RETRY,
    LOG_JOB_STARTED,
    SPAN_EXECUTE_JOB,
)
from eventpipe.errors import BackendUnavailable
from eventpipe.observability.metrics import MetricsCollector, get_metrics
from eventpipe.observability.tracing import get_tracer
from eventpipe.queue.backend import JobQueue
from eventpipe.types.job import JobContext, JobRecord, JobResult
from eventpipe.worker.handlers import JobHandler, execute_job, process_event

logger = logging.getLogger(__name__)


class DispatchEngine:
    """
    Concurrency-bounded job executor.
    
    Features:
    - Never more than ``concurrency`` jobs active in this engine
    - Retry with the backoff policy attached to each job
    - Terminal failures retained in the queue and reported once
    - Heartbeat to extend leases for long-running jobs
    - Graceful drain on shutdown with a bounded timeout
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler = process_event,
        worker_id: str | None = None,
        concurrency: int | None = None,
        poll_interval: float | None = None,
        heartbeat_interval: float | None = None,
        drain_timeout: float | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the engine.
        
        Args:
            queue: The durable job queue.
            handler: Job handler invoked once per attempt.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            concurrency: Maximum jobs executing at once.
            poll_interval: Seconds between polls when the queue is empty.
            heartbeat_interval: Seconds between lease extensions.
            drain_timeout: Seconds to wait for in-flight jobs on shutdown.
            metrics: Metrics collector.
        """
        settings = get_settings()

        self._queue = queue
        self._handler = handler
        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.concurrency = (
            settings.worker_concurrency if concurrency is None else concurrency
        )
        self.poll_interval = (
            settings.worker_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.heartbeat_interval = (
            settings.worker_heartbeat_interval_seconds
            if heartbeat_interval is None
            else heartbeat_interval
        )
        self.drain_timeout = (
            settings.worker_drain_timeout_seconds if drain_timeout is None else drain_timeout
        )

        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.poll_interval < 0:
            raise ValueError(f"poll_interval must be >= 0, got {self.poll_interval}")
        if self.heartbeat_interval <= 0:
            raise ValueError(f"heartbeat_interval must be > 0, got {self.heartbeat_interval}")

        self._running = False
        self._stopping = asyncio.Event()
        self._current_jobs: dict[str, asyncio.Task] = {}
        self._heartbeat_task: asyncio.Task | None = None
        self._metrics = metrics or get_metrics()

    @property
    def active_count(self) -> int:
        return len(self._current_jobs)

    async def start(self) -> None:
        """Run the dispatch loop until ``stop`` is called, then drain."""
        logger.info(
            "Dispatch engine starting",
            extra={"worker_id": self.worker_id, "concurrency": self.concurrency}
        )

        self._running = True
        self._stopping.clear()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        try:
            while self._running:
                try:
                    claimed = await self._fill_slots()
                    if claimed == 0:
                        await self._idle()
                except BackendUnavailable as e:
                    logger.error(
                        "Job store unavailable",
                        extra={"worker_id": self.worker_id, "error": str(e)},
                    )
                    await self._sleep(self.poll_interval)
                except Exception as e:
                    logger.exception(
                        f"Error in dispatch loop: {e}",
                        extra={"worker_id": self.worker_id}
                    )
                    await self._sleep(self.poll_interval)
        finally:
            await self._drain()

            if self._heartbeat_task:
                self._heartbeat_task.cancel()
                try:
                    await self._heartbeat_task
                except asyncio.CancelledError:
                    pass

        logger.info("Dispatch engine stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop claiming new jobs; in-flight jobs are drained by ``start``."""
        logger.info("Dispatch engine stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._stopping.set()

    async def _fill_slots(self) -> int:
        """
        Claim as many jobs as there are free slots.
        
        Returns:
            Number of jobs claimed.
        """
        free = self.concurrency - len(self._current_jobs)
        if free <= 0:
            return 0

        jobs = await self._queue.claim(self.worker_id, free)
        if not jobs:
            return 0

        self._metrics.record_lease_acquired(self.worker_id, len(jobs))

        for job in jobs:
            self._current_jobs[job.job_id] = asyncio.create_task(self._execute_job(job))

        return len(jobs)

    async def _idle(self) -> None:
        """Wait for a free slot when full, otherwise for the next poll."""
        if len(self._current_jobs) >= self.concurrency:
            await asyncio.wait(
                list(self._current_jobs.values()),
                timeout=self.poll_interval,
                return_when=asyncio.FIRST_COMPLETED,
            )
        else:
            await self._sleep(self.poll_interval)

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early on stop."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def _drain(self) -> None:
        """Let in-flight jobs finish, abandoning any still running at the timeout."""
        if not self._current_jobs:
            return

        logger.info(f"Waiting for {len(self._current_jobs)} jobs to complete")
        tasks = list(self._current_jobs.values())
        _, pending = await asyncio.wait(tasks, timeout=self.drain_timeout)

        if pending:
            # Abandoned jobs stay ACTIVE in the queue until their lease expires
            logger.warning(
                f"Abandoning {len(pending)} jobs after drain timeout",
                extra={"worker_id": self.worker_id, "job_ids": list(self._current_jobs)},
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _execute_job(self, job: JobRecord) -> None:
        """
        Execute a single claimed job.
        
        Handles the full lifecycle:
        1. Invoke the handler with the job's event
        2. Complete, reschedule, or fail the job
        
        Args:
            job: The claimed job.
        """
        context = JobContext(
            job_id=job.job_id,
            attempt=job.attempt,
            max_attempts=job.max_attempts,
            payload=job.payload,
            worker_id=self.worker_id,
        )

        logger.info(
            LOG_JOB_STARTED,
            extra={
                "job_id": job.job_id,
                "attempt": job.attempt,
                "worker_id": self.worker_id,
            }
        )

        self._metrics.active_jobs.inc()
        start_time = time.time()

        try:
            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", job.job_id)
                span.set_attribute("attempt", job.attempt)

                result = await execute_job(self._handler, context)

            await self._settle(job, result, time.time() - start_time)

        except BackendUnavailable as e:
            logger.error(
                "Could not record job outcome; job will be recovered after lease expiry",
                extra={"job_id": job.job_id, "error": str(e)},
            )
        except Exception as e:
            logger.exception(
                "Exception executing job",
                extra={"job_id": job.job_id, "error": str(e)}
            )
        finally:
            self._metrics.active_jobs.dec()
            self._current_jobs.pop(job.job_id, None)

    async def _settle(self, job: JobRecord, result: JobResult, duration: float) -> None:
        """Apply the state transition for a finished attempt."""
        if result.success:
            if not await self._queue.complete(job.job_id, self.worker_id):
                self._log_lease_lost(job)
                return

            logger.info(
                LOG_JOB_COMPLETED,
                extra={
                    "job_id": job.job_id,
                    "attempt": job.attempt,
                    "duration": f"{duration:.2f}s",
                }
            )
            self._metrics.record_job_finished("completed", duration)
            return

        error = result.error or "Unknown error"
        decision = job.options.retry.decide(job.attempt)

        if decision.retry:
            if not await self._queue.reschedule(job.job_id, self.worker_id, error, decision.delay_ms):
                self._log_lease_lost(job)
                return

            logger.warning(
                LOG_JOB_RETRY,
                extra={
                    "job_id": job.job_id,
                    "attempt": job.attempt,
                    "delay_ms": decision.delay_ms,
                    "error": error,
                }
            )
            self._metrics.record_job_finished("retried", duration)
            return

        if not await self._queue.fail(job.job_id, self.worker_id, error):
            self._log_lease_lost(job)
            return

        logger.error(
            LOG_JOB_FAILED,
            extra={
                "job_id": job.job_id,
                "error": error,
                "attempts": job.attempt,
            }
        )
        self._metrics.record_job_finished("failed", duration)

    def _log_lease_lost(self, job: JobRecord) -> None:
        logger.warning(
            "Job lease lost before outcome was recorded",
            extra={"job_id": job.job_id, "worker_id": self.worker_id},
        )

    async def _heartbeat_loop(self) -> None:
        """
        Periodically extend leases on running jobs.
        
        This prevents jobs from being reclaimed by the reaper
        while they're still being executed.
        """
        while True:
            try:
                await asyncio.sleep(self.heartbeat_interval)

                if not self._current_jobs:
                    continue

                extended = await self._queue.extend_leases(
                    list(self._current_jobs), self.worker_id
                )
                logger.debug("Extended leases", extra={"count": extended})

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")
