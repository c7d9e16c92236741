"""
Ingestion loop.

Consumes log records partition by partition, validates each one, submits
it to the enqueue gateway under its deduplication key, and commits the
partition offset only once the enqueue is confirmed.

Records within a partition are handled strictly in order; partitions in
the same fetch are handled concurrently.
"""

import asyncio
import logging

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from eventpipe.config import get_settings
from eventpipe.constants import (
    LOG_CONSUMER_CONNECTED,
    LOG_EVENT_ENQUEUED,
    LOG_INGESTION_HALTED,
    LOG_MESSAGE_FAILED,
)
from eventpipe.errors import BackendUnavailable, EnqueueError, IngestionHalted, ValidationError
from eventpipe.ingest.broker import LogBroker
from eventpipe.ingest.dedup import derive_key
from eventpipe.ingest.validator import validate
from eventpipe.observability.metrics import MetricsCollector, get_metrics
from eventpipe.queue.gateway import EnqueueAck, EnqueueGateway
from eventpipe.types.event import IngestionRecord, JobPayload
from eventpipe.types.job import JobOptions

logger = logging.getLogger(__name__)


class IngestionLoop:
    """
    Log-to-queue consumer.
    
    Guarantees:
    - A record's offset is committed only after its job is durably queued
      (or after it was rejected by validation and logged)
    - Offsets are committed in non-decreasing order per partition
    - A record that cannot be enqueued after bounded retries halts the loop
      instead of being skipped
    """

    def __init__(
        self,
        broker: LogBroker,
        gateway: EnqueueGateway,
        options: JobOptions | None = None,
        retry_attempts: int | None = None,
        retry_base_seconds: float | None = None,
        retry_max_seconds: float | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the loop.
        
        Args:
            broker: Connected-on-start log broker.
            gateway: Enqueue gateway for the durable queue.
            options: Job options for submissions. Defaults to the gateway's.
            retry_attempts: Enqueue attempts per record before halting.
            retry_base_seconds: Base of the exponential wait between attempts.
            retry_max_seconds: Cap on the wait between attempts.
            metrics: Metrics collector.
        """
        settings = get_settings()

        self._broker = broker
        self._gateway = gateway
        self._options = options
        self.retry_attempts = retry_attempts or settings.enqueue_retry_attempts
        self.retry_base_seconds = (
            settings.enqueue_retry_base_seconds if retry_base_seconds is None else retry_base_seconds
        )
        self.retry_max_seconds = (
            settings.enqueue_retry_max_seconds if retry_max_seconds is None else retry_max_seconds
        )
        self._metrics = metrics or get_metrics()
        self._running = False
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """
        Provision the topic, connect, and consume until stopped.
        
        Raises:
            IngestionHalted: If a record could not be enqueued.
            BackendUnavailable: If the broker cannot be reached.
        """
        await self._broker.ensure_topic()
        await self._broker.start()
        self._running = True

        logger.info(
            LOG_CONSUMER_CONNECTED,
            extra={"topic": self._broker.topic},
        )

        try:
            while not self._stop_requested:
                batch = await self._broker.fetch()
                if batch:
                    await self.process_batch(batch)
        except IngestionHalted as e:
            logger.critical(
                LOG_INGESTION_HALTED,
                extra={**e.context, "error": str(e)},
            )
            raise
        finally:
            self._running = False
            await self._broker.stop()
            logger.info("Kafka consumer disconnected", extra={"topic": self._broker.topic})

    async def stop(self) -> None:
        """Stop pulling new records; the current record finishes first."""
        logger.info("Shutting down Kafka consumer...")
        self._stop_requested = True

    async def process_batch(self, batch: dict[int, list[IngestionRecord]]) -> None:
        """
        Process one fetch worth of records, one task per partition.
        
        Every partition finishes (and commits what it confirmed) before a
        halt from any of them is raised.
        """
        results = await asyncio.gather(
            *(self._drain_partition(partition, records) for partition, records in batch.items()),
            return_exceptions=True,
        )

        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _drain_partition(self, partition: int, records: list[IngestionRecord]) -> None:
        last_done: int | None = None

        try:
            for record in records:
                if self._stop_requested:
                    break
                await self.handle_record(record)
                last_done = record.offset
        finally:
            if last_done is not None:
                await self._commit(partition, last_done)

    async def _commit(self, partition: int, offset: int) -> None:
        await self._broker.commit(partition, offset)
        self._metrics.record_offset_committed(self._broker.topic, partition, offset)
        logger.debug(
            "Committed offset",
            extra={"topic": self._broker.topic, "partition": partition, "offset": offset},
        )

    async def handle_record(self, record: IngestionRecord) -> EnqueueAck | None:
        """
        Validate and enqueue one record.
        
        Returns:
            The enqueue ack, or None if the record was rejected and skipped.
            
        Raises:
            IngestionHalted: If the enqueue could not be confirmed.
        """
        try:
            event = validate(record.raw)
        except ValidationError as e:
            logger.error(
                LOG_MESSAGE_FAILED,
                extra={
                    "error": str(e),
                    "error_kind": type(e).__name__,
                    **record.provenance,
                },
            )
            self._metrics.record_event_consumed(record.topic, "invalid")
            return None

        job_id = derive_key(event)
        ack = await self._submit(job_id, JobPayload.from_record(record, event), record)

        logger.info(
            LOG_EVENT_ENQUEUED,
            extra={
                "event_id": event.event_id,
                "event_type": event.type,
                "duplicate": ack.duplicate,
                **record.provenance,
            },
        )
        return ack

    async def _submit(
        self,
        job_id: str,
        payload: JobPayload,
        record: IngestionRecord,
    ) -> EnqueueAck:
        def log_retry(retry_state: RetryCallState) -> None:
            self._metrics.record_enqueue_retry(record.topic)
            logger.warning(
                "Enqueue backend unavailable, retrying",
                extra={
                    "job_id": job_id,
                    "attempt": retry_state.attempt_number,
                    "error": str(retry_state.outcome.exception()) if retry_state.outcome else None,
                    **record.provenance,
                },
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(
                    multiplier=self.retry_base_seconds,
                    max=self.retry_max_seconds,
                ),
                retry=retry_if_exception_type(BackendUnavailable),
                before_sleep=log_retry,
                reraise=True,
            ):
                with attempt:
                    ack = await self._gateway.submit(job_id, payload, self._options)
        except (BackendUnavailable, EnqueueError) as e:
            raise IngestionHalted(
                f"Could not enqueue job {job_id}",
                topic=record.topic,
                partition=record.partition,
                offset=record.offset,
                cause=e,
            ) from e

        return ack
