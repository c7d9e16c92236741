"""Initial schema with jobs table

Revision ID: 001
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enums using raw SQL with IF NOT EXISTS
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE job_status AS ENUM ('waiting', 'active', 'completed', 'failed');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)
    
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE backoff_kind AS ENUM ('fixed', 'exponential');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)
    
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default="process-event"),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "status",
            postgresql.ENUM("waiting", "active", "completed", "failed", name="job_status", create_type=False),
            nullable=False,
            server_default="waiting",
        ),
        sa.Column("attempt", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column(
            "backoff_kind",
            postgresql.ENUM("fixed", "exponential", name="backoff_kind", create_type=False),
            nullable=False,
            server_default="exponential",
        ),
        sa.Column("backoff_delay_ms", sa.Integer, nullable=False, server_default="1000"),
        sa.Column("remove_on_complete", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("remove_on_fail", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("lease_owner", sa.String(255), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_jobs_lease_owner", "jobs", ["lease_owner"])
    op.create_index("ix_jobs_lease_expires_at", "jobs", ["lease_expires_at"])
    op.create_index("ix_jobs_scheduled_at", "jobs", ["scheduled_at"])
    
    # Partial index for queue polling
    op.execute("""
        CREATE INDEX ix_jobs_queue_poll 
        ON jobs (status, scheduled_at) 
        WHERE status = 'waiting'
    """)
    
    # Partial index for lease expiry
    op.execute("""
        CREATE INDEX ix_jobs_lease_expiry 
        ON jobs (lease_expires_at) 
        WHERE status = 'active'
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_jobs_lease_expiry")
    op.execute("DROP INDEX IF EXISTS ix_jobs_queue_poll")
    op.drop_index("ix_jobs_scheduled_at")
    op.drop_index("ix_jobs_lease_expires_at")
    op.drop_index("ix_jobs_lease_owner")
    op.drop_index("ix_jobs_status")
    
    op.drop_table("jobs")
    
    op.execute("DROP TYPE IF EXISTS backoff_kind")
    op.execute("DROP TYPE IF EXISTS job_status")
