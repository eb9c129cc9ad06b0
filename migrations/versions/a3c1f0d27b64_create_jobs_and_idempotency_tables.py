"""create jobs and idempotency tables

Revision ID: a3c1f0d27b64
Revises:
Create Date: 2026-10-19 10:12:41.508233

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a3c1f0d27b64"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "job_type", sa.String(50), nullable=False, comment="Handler selector"
        ),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            comment="Execution context (submission and prompt identifiers)",
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="pending",
            comment="pending|processing|completed|failed|retry|cancelled",
        ),
        sa.Column(
            "attempt_count",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Attempts consumed",
        ),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column(
            "scheduled_for",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="Earliest eligible dispatch time",
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "owner_token", sa.String(64), nullable=True, comment="Set while processing"
        ),
        sa.Column(
            "result", sa.JSON, nullable=True, comment="Serialized handler result"
        ),
        sa.Column(
            "error_code",
            sa.String(64),
            nullable=True,
            comment="Structured error identifier",
        ),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'retry', 'cancelled')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint(
            "attempt_count >= 0 AND attempt_count <= max_attempts",
            name="jobs_attempts_check",
        ),
        sa.CheckConstraint("max_attempts >= 1", name="jobs_max_attempts_check"),
    )

    # Claim path: pending jobs by eligibility time
    op.create_index("ix_jobs_status_scheduled_for", "jobs", ["status", "scheduled_for"])
    # Reaper path: processing jobs by start time
    op.create_index("ix_jobs_status_started_at", "jobs", ["status", "started_at"])
    op.create_index("ix_jobs_created_at", "jobs", ["created_at"])
    op.create_index("ix_jobs_job_type", "jobs", ["job_type"])

    op.create_table(
        "idempotency_keys",
        sa.Column("key", sa.String(255), primary_key=True),
        sa.Column("endpoint", sa.String(100), primary_key=True),
        sa.Column("user_id", sa.String(255), primary_key=True),
        sa.Column("response_data", sa.JSON, nullable=False),
        sa.Column("status_code", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_idempotency_keys_expires_at", "idempotency_keys", ["expires_at"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_idempotency_keys_expires_at", table_name="idempotency_keys")
    op.drop_table("idempotency_keys")

    op.drop_index("ix_jobs_job_type", table_name="jobs")
    op.drop_index("ix_jobs_created_at", table_name="jobs")
    op.drop_index("ix_jobs_status_started_at", table_name="jobs")
    op.drop_index("ix_jobs_status_scheduled_for", table_name="jobs")
    op.drop_table("jobs")
