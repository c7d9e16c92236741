"""
Log broker contract and its Kafka implementation.

The ingestion loop only sees ``LogBroker``: provision the topic, start,
fetch records grouped by partition, commit per partition, stop.
"""

import logging
from typing import Protocol

from aiokafka import AIOKafkaConsumer
from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import (
    CommitFailedError,
    KafkaConnectionError,
    KafkaError,
    TopicAlreadyExistsError,
)
from aiokafka.structs import TopicPartition

from eventpipe.config import Settings, get_settings
from eventpipe.errors import BackendUnavailable
from eventpipe.types.event import IngestionRecord

logger = logging.getLogger(__name__)


class LogBroker(Protocol):
    """Subscribe/commit contract of the partitioned log."""

    topic: str

    async def ensure_topic(self) -> None:
        """Create the topic if it does not exist yet."""
        ...

    async def start(self) -> None:
        """Connect and subscribe."""
        ...

    async def fetch(self) -> dict[int, list[IngestionRecord]]:
        """Return the next records, grouped by partition in offset order."""
        ...

    async def commit(self, partition: int, offset: int) -> None:
        """Mark every record up to and including ``offset`` as consumed."""
        ...

    async def stop(self) -> None:
        """Disconnect."""
        ...


class KafkaLogBroker:
    """
    aiokafka-backed log broker.

    Auto-commit is disabled; offsets only move through ``commit``.
    """

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()
        self.topic = self._settings.kafka_topic
        self._consumer: AIOKafkaConsumer | None = None

    async def ensure_topic(self) -> None:
        """
        Create the topic with the configured partitions and replication.

        An existing topic is left untouched.
        """
        settings = self._settings
        admin = AIOKafkaAdminClient(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            client_id=f"{settings.kafka_client_id}-admin",
        )

        try:
            await admin.start()
            response = await admin.create_topics(
                [
                    NewTopic(
                        name=self.topic,
                        num_partitions=settings.kafka_topic_partitions,
                        replication_factor=settings.kafka_topic_replication_factor,
                    )
                ],
                timeout_ms=settings.kafka_admin_timeout_ms,
            )
            for topic_error in getattr(response, "topic_errors", ()):
                name, error_code = topic_error[0], topic_error[1]
                if error_code == TopicAlreadyExistsError.errno:
                    logger.debug("Topic already exists", extra={"topic": name})
                elif error_code != 0:
                    raise BackendUnavailable(
                        f"Failed to create topic {name} (error code {error_code})"
                    )
                else:
                    logger.info(
                        "Created topic",
                        extra={
                            "topic": name,
                            "partitions": settings.kafka_topic_partitions,
                        },
                    )
        except TopicAlreadyExistsError:
            logger.debug("Topic already exists", extra={"topic": self.topic})
        except KafkaError as e:
            raise BackendUnavailable("Kafka admin request failed", cause=e) from e
        finally:
            await admin.close()

    async def start(self) -> None:
        settings = self._settings
        self._consumer = AIOKafkaConsumer(
            self.topic,
            bootstrap_servers=settings.kafka_bootstrap_servers,
            client_id=settings.kafka_client_id,
            group_id=settings.kafka_group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest" if settings.kafka_from_beginning else "latest",
            max_poll_records=settings.kafka_max_poll_records,
        )
        try:
            await self._consumer.start()
        except KafkaConnectionError as e:
            self._consumer = None
            raise BackendUnavailable("Cannot connect to Kafka", cause=e) from e

    async def fetch(self) -> dict[int, list[IngestionRecord]]:
        if self._consumer is None:
            raise RuntimeError("Broker not started. Call start() first.")

        try:
            data = await self._consumer.getmany(
                timeout_ms=self._settings.kafka_fetch_timeout_ms
            )
        except KafkaConnectionError as e:
            raise BackendUnavailable("Kafka fetch failed", cause=e) from e

        return {
            tp.partition: [
                IngestionRecord(
                    topic=message.topic,
                    partition=message.partition,
                    offset=message.offset,
                    raw=message.value,
                    key=message.key,
                )
                for message in messages
            ]
            for tp, messages in data.items()
        }

    async def commit(self, partition: int, offset: int) -> None:
        if self._consumer is None:
            raise RuntimeError("Broker not started. Call start() first.")

        tp = TopicPartition(self.topic, partition)
        try:
            # Kafka stores the next offset to read
            await self._consumer.commit({tp: offset + 1})
        except CommitFailedError:
            # Partition reassigned; the new owner replays from the last commit.
            logger.warning(
                "Offset commit rejected after rebalance",
                extra={"topic": self.topic, "partition": partition, "offset": offset},
            )
        except KafkaError as e:
            raise BackendUnavailable("Kafka commit failed", cause=e) from e

    async def stop(self) -> None:
        if self._consumer is None:
            return
        try:
            await self._consumer.stop()
        finally:
            self._consumer = None
