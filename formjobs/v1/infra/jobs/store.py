"""
Durable job store.

Every state change is a single conditional UPDATE keyed on the expected
status (and owner_token for processing jobs). The rowcount decides the
outcome, so a caller that loses a race changes nothing.
"""

import json
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import case, delete, func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from formjobs.config.logging import get_logger
from formjobs.v1.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from formjobs.v1.infra.jobs.models import (
    FINISHED_STATUSES,
    JOB_TYPE_MAX_LENGTH,
    Job,
    JobStatus,
)
from formjobs.v1.infra.jobs.schemas import JobStatsResponse

logger = get_logger(__name__)

Clock = Callable[[], datetime]

# Serializes claimers on PostgreSQL so the concurrency cap holds across processes
CLAIM_LOCK_KEY = 0x6A6F6273


def utcnow() -> datetime:
    return datetime.now(UTC)


def _new_owner_token() -> str:
    return uuid.uuid4().hex


class JobStore:
    """Job persistence and atomic state transitions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
        max_concurrent: int | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self.max_concurrent = max_concurrent

    def now(self) -> datetime:
        return self._clock()

    # Ingress

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        max_attempts: int,
        delay: timedelta = timedelta(0),
    ) -> UUID:
        """Persist a pending job; performs no execution."""
        if not isinstance(job_type, str) or not job_type.strip():
            raise ValidationError("job_type must be a non-empty string")
        if len(job_type) > JOB_TYPE_MAX_LENGTH:
            raise ValidationError(
                f"job_type must be at most {JOB_TYPE_MAX_LENGTH} characters",
                details={"job_type": job_type},
            )
        if not isinstance(payload, dict):
            raise ValidationError("payload must be a JSON object")
        try:
            json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"payload is not JSON-serializable: {e}") from e
        if isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or max_attempts < 1:
            raise ValidationError("max_attempts must be a positive integer")
        if delay < timedelta(0):
            raise ValidationError("delay must not be negative")

        now = self.now()
        job = Job(
            id=uuid.uuid4(),
            job_type=job_type,
            payload=payload,
            status=JobStatus.PENDING.value,
            attempt_count=0,
            max_attempts=max_attempts,
            scheduled_for=now + delay,
            created_at=now,
            updated_at=now,
        )

        async with self._session_factory() as session:
            async with session.begin():
                session.add(job)

        logger.info(
            "Job enqueued",
            job_id=str(job.id),
            job_type=job_type,
            max_attempts=max_attempts,
            scheduled_for=job.scheduled_for.isoformat(),
        )
        return job.id

    # Reads

    async def get(self, job_id: UUID) -> Job | None:
        async with self._session_factory() as session:
            return await session.get(Job, job_id)

    async def count_by_status(self, status: JobStatus) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(Job.id)).where(Job.status == status.value)
            )
            return result.scalar() or 0

    async def get_statistics(self) -> JobStatsResponse:
        """Per-status counts from a single grouped read, plus counts by type."""
        async with self._session_factory() as session:
            status_result = await session.execute(
                select(Job.status, func.count(Job.id)).group_by(Job.status)
            )
            by_status = dict(status_result.all())

            type_result = await session.execute(
                select(Job.job_type, func.count(Job.id)).group_by(Job.job_type)
            )
            by_type = dict(type_result.all())

        counts = {status.value: by_status.get(status.value, 0) for status in JobStatus}
        return JobStatsResponse(total=sum(counts.values()), by_type=by_type, **counts)

    async def list_by_status(
        self,
        statuses: Iterable[JobStatus] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        """Jobs newest first, optionally filtered by status."""
        query = select(Job)
        if statuses:
            query = query.where(Job.status.in_([s.value for s in statuses]))
        query = query.order_by(Job.created_at.desc(), Job.id).offset(offset).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # Claiming

    async def claim_next_batch(
        self, limit: int, eligible_before: datetime | None = None
    ) -> list[Job]:
        """
        Claim up to limit pending jobs, oldest first.

        A job is eligible when scheduled_for <= eligible_before (default now).
        Each row moves to processing with its own owner_token in one
        conditional update, so no job is handed to two callers. When
        max_concurrent is set the claim never takes processing above it.
        """
        if limit <= 0:
            return []

        now = self.now()
        cutoff = eligible_before or now
        claimed: list[UUID] = []

        async with self._session_factory() as session:
            async with session.begin():
                if self.max_concurrent is not None and session.bind.dialect.name == "postgresql":
                    await session.execute(
                        text("SELECT pg_advisory_xact_lock(:key)"), {"key": CLAIM_LOCK_KEY}
                    )

                while len(claimed) < limit:
                    wanted = limit - len(claimed)
                    if self.max_concurrent is not None:
                        processing = await session.execute(
                            select(func.count(Job.id)).where(
                                Job.status == JobStatus.PROCESSING.value
                            )
                        )
                        wanted = min(wanted, self.max_concurrent - (processing.scalar() or 0))
                        if wanted <= 0:
                            break

                    candidates = await session.execute(
                        select(Job.id)
                        .where(
                            Job.status == JobStatus.PENDING.value,
                            Job.scheduled_for <= cutoff,
                        )
                        .order_by(Job.created_at, Job.id)
                        .limit(wanted)
                        .with_for_update(skip_locked=True)
                    )
                    candidate_ids = list(candidates.scalars().all())
                    if not candidate_ids:
                        break

                    for job_id in candidate_ids:
                        if await self._claim_one(session, job_id, now):
                            claimed.append(job_id)
                        else:
                            logger.debug("Lost claim race", job_id=str(job_id))

            if not claimed:
                return []

            result = await session.execute(
                select(Job)
                .where(Job.id.in_(claimed))
                .order_by(Job.created_at, Job.id)
                .execution_options(populate_existing=True)
            )
            jobs = list(result.scalars().all())

        logger.info(
            "Claimed jobs",
            job_count=len(jobs),
            job_ids=[str(job.id) for job in jobs],
        )
        return jobs

    async def _claim_one(self, session: AsyncSession, job_id: UUID, now: datetime) -> bool:
        stmt = update(Job).where(
            Job.id == job_id, Job.status == JobStatus.PENDING.value
        )
        if self.max_concurrent is not None:
            counted = aliased(Job)
            in_flight = (
                select(func.count(counted.id))
                .where(counted.status == JobStatus.PROCESSING.value)
                .scalar_subquery()
            )
            stmt = stmt.where(in_flight < self.max_concurrent)

        result = await session.execute(
            stmt.values(
                status=JobStatus.PROCESSING.value,
                owner_token=_new_owner_token(),
                started_at=now,
                updated_at=now,
            ).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # Worker outcomes

    async def mark_completed(
        self, job_id: UUID, owner_token: str, result: dict[str, Any] | None
    ) -> Job:
        now = self.now()
        return await self._transition(
            job_id,
            "complete",
            expected=[JobStatus.PROCESSING],
            owner_token=owner_token,
            values={
                "status": JobStatus.COMPLETED.value,
                "completed_at": now,
                "owner_token": None,
                "result": result,
                "error_code": None,
                "error_message": None,
            },
        )

    async def mark_failed(
        self,
        job_id: UUID,
        owner_token: str,
        error: str,
        error_code: str = "PROCESSING_ERROR",
    ) -> Job:
        """Fail a processing job; the failed attempt is counted up to max_attempts."""
        now = self.now()
        return await self._transition(
            job_id,
            "fail",
            expected=[JobStatus.PROCESSING],
            owner_token=owner_token,
            values={
                "status": JobStatus.FAILED.value,
                "attempt_count": case(
                    (Job.attempt_count < Job.max_attempts, Job.attempt_count + 1),
                    else_=Job.attempt_count,
                ),
                "completed_at": now,
                "owner_token": None,
                "error_code": error_code,
                "error_message": error,
            },
        )

    async def mark_retry(
        self,
        job_id: UUID,
        owner_token: str,
        error: str,
        next_scheduled_for: datetime,
        error_code: str = "RETRY_SCHEDULED",
    ) -> Job:
        """Count the failed attempt and hold the job until next_scheduled_for."""
        now = self.now()
        return await self._transition(
            job_id,
            "retry",
            expected=[JobStatus.PROCESSING],
            owner_token=owner_token,
            extra_where=[Job.attempt_count + 1 < Job.max_attempts],
            values={
                "status": JobStatus.RETRY.value,
                "attempt_count": Job.attempt_count + 1,
                "scheduled_for": max(next_scheduled_for, now),
                "owner_token": None,
                "error_code": error_code,
                "error_message": error,
            },
        )

    async def release_stuck(
        self,
        job_id: UUID,
        owner_token: str,
        error: str,
        error_code: str = "WORKER_TIMEOUT",
    ) -> Job:
        """Return a stuck processing job to pending, consuming one attempt."""
        now = self.now()
        return await self._transition(
            job_id,
            "release",
            expected=[JobStatus.PROCESSING],
            owner_token=owner_token,
            extra_where=[Job.attempt_count < Job.max_attempts],
            values={
                "status": JobStatus.PENDING.value,
                "attempt_count": Job.attempt_count + 1,
                "scheduled_for": now,
                "owner_token": None,
                "error_code": error_code,
                "error_message": error,
            },
        )

    async def promote_due_retries(self) -> int:
        """Move retry jobs whose backoff has elapsed back to pending."""
        now = self.now()
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Job)
                    .where(
                        Job.status == JobStatus.RETRY.value,
                        Job.scheduled_for <= now,
                    )
                    .values(status=JobStatus.PENDING.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                promoted = result.rowcount or 0

        if promoted:
            logger.info("Promoted retry jobs", promoted_count=promoted)
        return promoted

    # Operator actions

    async def cancel(self, job_id: UUID) -> Job:
        """Cancel a job that has not been dispatched yet."""
        now = self.now()
        job = await self._transition(
            job_id,
            "cancel",
            expected=[JobStatus.PENDING],
            values={
                "status": JobStatus.CANCELLED.value,
                "completed_at": now,
                "owner_token": None,
                "error_code": "CANCELLED",
                "error_message": "Cancelled by admin",
            },
        )
        logger.info("Job cancelled", job_id=str(job_id))
        return job

    async def requeue(self, job_id: UUID, reset_attempts: bool = False) -> tuple[Job, bool]:
        """
        Make a failed or retry job pending again, eligible immediately.

        Returns (job, changed); an already pending job is returned unchanged.
        """
        current = await self.get(job_id)
        if current is None:
            raise NotFoundError("Job not found", details={"job_id": str(job_id)})
        if current.status == JobStatus.PENDING.value:
            return current, False

        now = self.now()
        values: dict[str, Any] = {
            "status": JobStatus.PENDING.value,
            "scheduled_for": now,
            "owner_token": None,
            "completed_at": None,
            "error_code": None,
        }
        if reset_attempts:
            values["attempt_count"] = 0

        job = await self._transition(
            job_id,
            "retry",
            expected=[JobStatus.FAILED, JobStatus.RETRY],
            values=values,
        )
        logger.info(
            "Job requeued",
            job_id=str(job_id),
            attempt_count=job.attempt_count,
            reset_attempts=reset_attempts,
        )
        return job, True

    # Stuck detection

    async def reclaim_stuck(self, timeout: timedelta) -> list[Job]:
        """Processing jobs whose started_at is older than timeout."""
        cutoff = self.now() - timeout
        async with self._session_factory() as session:
            result = await session.execute(
                select(Job)
                .where(
                    Job.status == JobStatus.PROCESSING.value,
                    Job.started_at < cutoff,
                )
                .order_by(Job.started_at)
            )
            return list(result.scalars().all())

    async def find_stale_pending(self, threshold: timedelta) -> list[Job]:
        """Pending jobs that have been eligible for longer than threshold."""
        cutoff = self.now() - threshold
        async with self._session_factory() as session:
            result = await session.execute(
                select(Job)
                .where(
                    Job.status == JobStatus.PENDING.value,
                    Job.scheduled_for < cutoff,
                )
                .order_by(Job.scheduled_for)
            )
            return list(result.scalars().all())

    # Retention

    async def delete_older_than(
        self,
        cutoff: datetime,
        statuses: Iterable[JobStatus] = FINISHED_STATUSES,
    ) -> int:
        """Delete finished jobs that finished before cutoff."""
        statuses = set(statuses)
        not_finished = statuses - FINISHED_STATUSES
        if not_finished:
            raise ValidationError(
                "Only finished jobs can be deleted",
                details={"statuses": sorted(s.value for s in not_finished)},
            )
        if not statuses:
            return 0

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(Job)
                    .where(
                        Job.status.in_([s.value for s in statuses]),
                        func.coalesce(Job.completed_at, Job.updated_at) < cutoff,
                    )
                    .execution_options(synchronize_session=False)
                )
                deleted_count = result.rowcount or 0

        if deleted_count:
            logger.info(
                "Deleted old jobs",
                deleted_count=deleted_count,
                cutoff=cutoff.isoformat(),
            )
        return deleted_count

    # Internals

    async def _transition(
        self,
        job_id: UUID,
        action: str,
        expected: list[JobStatus],
        values: dict[str, Any],
        owner_token: str | None = None,
        extra_where: list[Any] | None = None,
    ) -> Job:
        stmt = update(Job).where(
            Job.id == job_id, Job.status.in_([s.value for s in expected])
        )
        if owner_token is not None:
            stmt = stmt.where(Job.owner_token == owner_token)
        if extra_where:
            stmt = stmt.where(*extra_where)
        stmt = stmt.values(**values, updated_at=self.now()).execution_options(
            synchronize_session=False
        )

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    raise await self._rejected(session, job_id, action, expected, owner_token)

            job = await session.get(Job, job_id, populate_existing=True)

        logger.debug("Job transitioned", job_id=str(job_id), action=action, status=job.status)
        return job

    async def _rejected(
        self,
        session: AsyncSession,
        job_id: UUID,
        action: str,
        expected: list[JobStatus],
        owner_token: str | None,
    ) -> Exception:
        current = await session.get(Job, job_id)
        if current is None:
            return NotFoundError("Job not found", details={"job_id": str(job_id)})

        details = {
            "job_id": str(job_id),
            "status": current.status,
            "expected": [s.value for s in expected],
            "attempt_count": current.attempt_count,
            "max_attempts": current.max_attempts,
        }
        if current.status in {s.value for s in expected} and owner_token is not None:
            if current.owner_token != owner_token:
                return InvalidStateError(
                    f"Cannot {action} job: owned by another worker", details=details
                )
            return InvalidStateError(
                f"Cannot {action} job: attempts exhausted", details=details
            )
        return InvalidStateError(
            f"Cannot {action} job in status '{current.status}'", details=details
        )
