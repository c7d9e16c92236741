"""
Worker process for executing event jobs.

Builds the queue connection, runs the dispatch engine, and drains it on
SIGTERM/SIGINT before releasing the connection.
"""

import asyncio
import logging
import signal

from eventpipe.config import get_settings
from eventpipe.db.connection import Database
from eventpipe.observability.logging import bind_context, setup_logging
from eventpipe.observability.metrics import setup_metrics
from eventpipe.observability.tracing import instrument_sqlalchemy, setup_tracing
from eventpipe.queue.postgres import PostgresJobQueue
from eventpipe.worker.engine import DispatchEngine

logger = logging.getLogger(__name__)


async def run_async() -> None:
    """Run the worker asynchronously."""
    setup_logging("worker")
    setup_metrics()
    setup_tracing()

    settings = get_settings()
    database = Database.from_settings(settings)
    instrument_sqlalchemy(database.engine)

    queue = PostgresJobQueue(
        database,
        lease_duration_seconds=settings.worker_lease_duration_seconds,
    )
    engine = DispatchEngine(queue)
    bind_context(worker_id=engine.worker_id, queue=settings.queue_name)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(engine.stop())
        )

    try:
        await engine.start()
    finally:
        await queue.close()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
