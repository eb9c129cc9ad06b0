"""
Job table for background processing.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from formjobs.infra.database import Base, UTCDateTime


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY = "retry"
    CANCELLED = "cancelled"


# No transition leaves these
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED})

# Eligible for retention cleanup
FINISHED_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)

JOB_TYPE_MAX_LENGTH = 50


class Job(Base):
    """
    A unit of deferred work (AI generation, document rendering).

    The row is the only record of a job's state. Ownership while processing
    is carried by owner_token; every transition is a conditional update on
    status (and owner_token where applicable).
    """

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    job_type: Mapped[str] = mapped_column(
        String(JOB_TYPE_MAX_LENGTH), nullable=False, comment="Handler selector"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Execution context (submission and prompt identifiers)",
    )

    # Job state
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="pending|processing|completed|failed|retry|cancelled",
    )
    attempt_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Attempts consumed"
    )
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    # Scheduling and ownership
    scheduled_for: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, comment="Earliest eligible dispatch time"
    )
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    owner_token: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Set while processing"
    )

    # Outcome
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Serialized handler result"
    )
    error_code: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Structured error identifier"
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'retry', 'cancelled')",
            name="jobs_status_check",
        ),
        CheckConstraint(
            "attempt_count >= 0 AND attempt_count <= max_attempts",
            name="jobs_attempts_check",
        ),
        CheckConstraint("max_attempts >= 1", name="jobs_max_attempts_check"),
        Index("ix_jobs_status_scheduled_for", "status", "scheduled_for"),
        Index("ix_jobs_status_started_at", "status", "started_at"),
        Index("ix_jobs_created_at", "created_at"),
        Index("ix_jobs_job_type", "job_type"),
    )

    def is_terminal(self) -> bool:
        """Check if no further transition is possible."""
        return self.status in {s.value for s in TERMINAL_STATUSES}

    def __repr__(self) -> str:
        return (
            f"<Job id={self.id} type={self.job_type} status={self.status} "
            f"attempts={self.attempt_count}/{self.max_attempts}>"
        )
