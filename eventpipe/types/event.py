"""
Event and log record type definitions.
"""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Event(BaseModel):
    """
    Canonical unit of work read from the log.

    Immutable once validated. Field names on the wire are camelCase
    (``eventId``); attributes are snake_case.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
    )

    event_id: str = Field(..., alias="eventId", min_length=1, strict=True)
    timestamp: int = Field(..., gt=0, strict=True, description="Logical event time")
    type: str = Field(..., min_length=1, strict=True)
    payload: Any = Field(..., description="Opaque structured value")

    def to_wire(self) -> dict[str, Any]:
        """Serialize back to the camelCase wire format."""
        return self.model_dump(by_alias=True, mode="json")


@dataclass(frozen=True)
class IngestionRecord:
    """
    A single record as read from the log broker.

    Read once and discarded after enqueue or a logged validation failure.
    """

    topic: str
    partition: int
    offset: int
    raw: bytes | None
    key: bytes | None = None

    @property
    def provenance(self) -> dict[str, Any]:
        return {"topic": self.topic, "partition": self.partition, "offset": self.offset}


class JobPayload(BaseModel):
    """
    Payload snapshot stored with a job: the event plus where it came from.
    """

    model_config = ConfigDict(frozen=True)

    topic: str
    partition: int
    offset: int
    event: Event

    @classmethod
    def from_record(cls, record: IngestionRecord, event: Event) -> "JobPayload":
        return cls(
            topic=record.topic,
            partition=record.partition,
            offset=record.offset,
            event=event,
        )

    def to_storage(self) -> dict[str, Any]:
        """Serialize for JSON storage in the durable queue."""
        return {
            "topic": self.topic,
            "partition": self.partition,
            "offset": self.offset,
            "event": self.event.to_wire(),
        }
