"""
SQLAlchemy database models.
Defines the jobs table backing the durable queue.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from eventpipe.constants import JOB_NAME, BackoffKind, JobStatus


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing one event scheduled for execution.

    This is the authoritative source of truth for job state.
    
    Key constraints:
    - id is the event's deduplication key, so at most one live job per event
    - status transitions are driven only by the dispatch engine
    - lease_owner and lease_expires_at track claims for at-least-once delivery
    """

    __tablename__ = "jobs"

    # Primary key (deduplication key)
    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default=JOB_NAME,
    )

    # Event plus provenance
    payload: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobStatus.WAITING,
        index=True,
    )

    # Retry tracking
    attempt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
    )
    backoff_kind: Mapped[BackoffKind] = mapped_column(
        Enum(BackoffKind, name="backoff_kind", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=BackoffKind.EXPONENTIAL,
    )
    backoff_delay_ms: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1000,
    )
    remove_on_complete: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    remove_on_fail: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    # Lease management
    lease_owner: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    # Next eligible run time (retry backoff)
    scheduled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Error tracking
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        # Index for efficient queue polling
        Index(
            "ix_jobs_queue_poll",
            "status",
            "scheduled_at",
            postgresql_where=text("status = 'waiting'"),
        ),
        # Index for lease expiry checks
        Index(
            "ix_jobs_lease_expiry",
            "lease_expires_at",
            postgresql_where=text("status = 'active'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, status={self.status}, "
            f"attempt={self.attempt}/{self.max_attempts})"
        )
