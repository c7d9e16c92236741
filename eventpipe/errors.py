"""
Exception hierarchy for the event pipeline.

Per-record errors (validation) are contained by the ingestion loop,
per-job errors (processing) by the dispatch engine. Transport errors
are retried where they occur and surfaced when retries run out.
"""

from typing import Any


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description.
        cause: Original exception if wrapping.
        context: Additional context for logging.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class ValidationError(PipelineError):
    """A raw log record could not be turned into an Event."""


class MalformedPayload(ValidationError):
    """The record bytes are not a parseable structured record."""


class SchemaViolation(ValidationError):
    """A required field is missing, empty, or of the wrong kind."""


class BackendUnavailable(PipelineError):
    """Transport or storage failure talking to the queue or the log broker."""

    retryable = True


class EnqueueError(PipelineError):
    """The durable queue rejected a submission for a non-transport reason."""


class IngestionHalted(PipelineError):
    """Enqueue retries were exhausted; the partition cannot advance."""

    def __init__(
        self,
        message: str,
        topic: str,
        partition: int,
        offset: int,
        cause: Exception | None = None,
    ):
        self.topic = topic
        self.partition = partition
        self.offset = offset
        super().__init__(
            message,
            cause=cause,
            context={"topic": topic, "partition": partition, "offset": offset},
        )


class ProcessingError(PipelineError):
    """Raised by a job handler; the job is retried up to its attempt limit."""

    retryable = True
