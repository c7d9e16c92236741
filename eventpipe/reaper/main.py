"""
Lease reaper for recovering jobs from crashed workers.

The reaper runs periodically to find active jobs with expired leases
and returns them to the queue. This ensures at-least-once execution
when a worker dies mid-job.
"""

import asyncio
import logging
import signal

from eventpipe.config import get_settings
from eventpipe.constants import LOG_LEASE_RECOVERED
from eventpipe.db.connection import Database
from eventpipe.errors import BackendUnavailable
from eventpipe.observability.logging import setup_logging
from eventpipe.observability.metrics import MetricsCollector, get_metrics
from eventpipe.queue.backend import JobQueue
from eventpipe.queue.postgres import PostgresJobQueue

logger = logging.getLogger(__name__)


class Reaper:
    """
    Lease reaper that recovers expired job leases.
    
    Runs periodically to:
    1. Return ACTIVE jobs with an expired lease to WAITING, uncharged
    2. Refresh queue depth metrics
    """

    def __init__(
        self,
        queue: JobQueue,
        interval_seconds: int | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the reaper.
        
        Args:
            queue: The durable job queue.
            interval_seconds: Seconds between reaper runs.
            metrics: Metrics collector.
        """
        settings = get_settings()
        self._queue = queue
        self.interval = (
            settings.reaper_interval_seconds if interval_seconds is None else interval_seconds
        )
        self._running = False
        self._stopping = asyncio.Event()
        self._metrics = metrics or get_metrics()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True
        self._stopping.clear()
        
        while self._running:
            try:
                await self.run_once()
            except BackendUnavailable as e:
                logger.error("Job store unavailable", extra={"error": str(e)})
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")
            
            await self._sleep(self.interval)
        
        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False
        self._stopping.set()

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early on stop."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def run_once(self) -> int:
        """
        Run the reaper once (for testing or cron-style execution).
        
        Returns:
            Number of jobs recovered.
        """
        job_ids = await self._queue.recover_expired_leases()
        
        for job_id in job_ids:
            logger.warning(LOG_LEASE_RECOVERED, extra={"job_id": job_id})
        
        if job_ids:
            self._metrics.record_lease_expired(len(job_ids))
        
        self._metrics.update_queue_depth(await self._queue.get_job_stats())
        return len(job_ids)


async def run_async() -> None:
    """Run the reaper asynchronously."""
    setup_logging("reaper")
    
    database = Database.from_settings()
    queue = PostgresJobQueue(database)
    reaper = Reaper(queue)
    
    loop = asyncio.get_running_loop()
    
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )
    
    try:
        await reaper.start()
    finally:
        await queue.close()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
