"""
Consumer process that feeds the durable queue from Kafka.

Exits non-zero if ingestion halts, so the supervisor restarts it and
the operator sees the failure.
"""

import asyncio
import logging
import signal
import sys

from eventpipe.config import get_settings
from eventpipe.db.connection import Database
from eventpipe.errors import BackendUnavailable, IngestionHalted
from eventpipe.ingest.broker import KafkaLogBroker
from eventpipe.ingest.loop import IngestionLoop
from eventpipe.observability.logging import bind_context, setup_logging
from eventpipe.observability.metrics import setup_metrics
from eventpipe.observability.tracing import setup_tracing
from eventpipe.queue.gateway import EnqueueGateway
from eventpipe.queue.postgres import PostgresJobQueue

logger = logging.getLogger(__name__)


async def run_async() -> None:
    """Run the consumer asynchronously."""
    setup_logging("consumer")
    setup_metrics()
    setup_tracing()

    settings = get_settings()
    database = Database.from_settings(settings)
    queue = PostgresJobQueue(database)
    loop = IngestionLoop(
        broker=KafkaLogBroker(settings),
        gateway=EnqueueGateway(queue),
    )
    bind_context(group_id=settings.kafka_group_id, topic=settings.kafka_topic)

    event_loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        event_loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(loop.stop())
        )

    try:
        await loop.run()
    finally:
        await queue.close()


def run() -> None:
    """Run the consumer."""
    try:
        asyncio.run(run_async())
    except IngestionHalted:
        # Already logged by the loop
        sys.exit(1)
    except BackendUnavailable as e:
        logger.critical(f"Error in Kafka consumer: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
