"""
Type definitions for the event pipeline.
Contains input/output type definitions shared across modules.
"""

from eventpipe.types.event import Event, IngestionRecord, JobPayload
from eventpipe.types.job import (
    JobContext,
    JobOptions,
    JobRecord,
    JobResult,
)

__all__ = [
    # Event types
    "Event",
    "IngestionRecord",
    "JobPayload",
    # Job types
    "JobOptions",
    "JobRecord",
    "JobResult",
    "JobContext",
]
