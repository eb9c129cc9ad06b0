"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from formjobs.v1.infra.jobs.models import JOB_TYPE_MAX_LENGTH, JobStatus


class JobCreate(BaseModel):
    """Schema for creating a new job."""

    job_type: str = Field(
        ..., min_length=1, max_length=JOB_TYPE_MAX_LENGTH, description="Job type identifier"
    )
    payload: dict[str, Any] = Field(default_factory=dict, description="Job parameters")
    max_attempts: int | None = Field(
        default=None, ge=1, le=20, description="Attempts before the job fails"
    )
    delay_s: float = Field(
        default=0.0, ge=0, description="Extra delay on top of the startup delay"
    )


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: UUID
    status: str
    scheduled_for: datetime


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: str
    payload: dict[str, Any]
    status: str
    attempt_count: int
    max_attempts: int
    scheduled_for: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class JobStatsResponse(BaseModel):
    """Per-status counts; the statuses always add up to total."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    retry: int = 0
    cancelled: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)

    @property
    def queue_depth(self) -> int:
        return self.pending + self.processing + self.retry


class JobStatusResponse(BaseModel):
    """Dashboard status view."""

    stats: JobStatsResponse
    jobs: list[JobResponse] | None = None
    stale_pending_count: int = 0


class ForceProcessResponse(BaseModel):
    processed_count: int


class CleanupStuckResponse(BaseModel):
    reset_count: int
    failed_count: int = 0
    stale_pending_ids: list[UUID] = Field(default_factory=list)


class CleanupResponse(BaseModel):
    deleted_count: int
    cutoff: datetime


class JobActionResponse(BaseModel):
    """Outcome of retry/cancel; changed is False for a no-op repeat."""

    ok: bool = True
    job_id: UUID
    status: JobStatus
    changed: bool = True
