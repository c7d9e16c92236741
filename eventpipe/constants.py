"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - WAITING -> ACTIVE (claimed by a dispatch engine, attempt incremented)
    - ACTIVE -> COMPLETED (success, unless removed on complete)
    - ACTIVE -> WAITING (retryable failure, scheduled after backoff delay)
    - ACTIVE -> FAILED (attempts exhausted, retained for inspection)
    - ACTIVE -> WAITING (lease expired - crash recovery)
    """

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffKind(StrEnum):
    """Delay growth between retry attempts."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"


# Default values
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_DELAY_MS = 1000
DEFAULT_BACKOFF_KIND = BackoffKind.EXPONENTIAL
DEFAULT_LEASE_DURATION_SECONDS = 30
JOB_NAME = "process-event"

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_EVENTS_CONSUMED = "events_consumed_total"
METRIC_ENQUEUE_RETRIES = "enqueue_retries_total"
METRIC_COMMITTED_OFFSET = "committed_offset"
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_ACTIVE_JOBS = "active_jobs"
METRIC_JOBS_COMPLETED = "jobs_completed_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_LEASE_EXPIRED = "lease_expired_total"
METRIC_LEASE_ACQUIRED = "lease_acquired_total"

# Trace span names
SPAN_SUBMIT_JOB = "submit_job"
SPAN_EXECUTE_JOB = "execute_job"

# Observability sink messages
LOG_CONSUMER_CONNECTED = "Kafka consumer connected"
LOG_EVENT_ENQUEUED = "Kafka event enqueued"
LOG_MESSAGE_FAILED = "Failed to process Kafka message"
LOG_INGESTION_HALTED = "Ingestion halted"
LOG_JOB_STARTED = "Job started"
LOG_JOB_COMPLETED = "Job completed"
LOG_JOB_RETRY = "Job retry scheduled"
LOG_JOB_FAILED = "Job failed"
LOG_LEASE_RECOVERED = "Job lease expired, re-queued"
