"""
Admin operations on the job system: status, force processing, cleanup,
retry and cancel.
"""

from datetime import timedelta
from uuid import UUID

from formjobs.config.logging import get_logger
from formjobs.config.settings import Settings
from formjobs.v1.core.exceptions import NotFoundError
from formjobs.v1.infra.jobs.models import JobStatus
from formjobs.v1.infra.jobs.reaper import StuckJobReaper
from formjobs.v1.infra.jobs.scheduler import JobScheduler
from formjobs.v1.infra.jobs.schemas import (
    CleanupResponse,
    CleanupStuckResponse,
    ForceProcessResponse,
    JobActionResponse,
    JobResponse,
    JobStatusResponse,
)
from formjobs.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


class JobAdminService:
    """Service behind the admin endpoints and the operator CLI."""

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        scheduler: JobScheduler,
        reaper: StuckJobReaper,
    ):
        self.settings = settings
        self.store = store
        self.scheduler = scheduler
        self.reaper = reaper

    async def get_status(self, quiet: bool = False) -> JobStatusResponse:
        """
        Statistics plus, unless quiet, the most recent jobs.

        Quiet mode is for dashboard polling: counts only, no job list.
        """
        stats = await self.store.get_statistics()
        stale = await self.store.find_stale_pending(
            timedelta(seconds=self.settings.job_stuck_pending_threshold_s)
        )

        jobs = None
        if not quiet:
            recent = await self.store.list_by_status(limit=self.settings.job_status_list_limit)
            jobs = [JobResponse.model_validate(job) for job in recent]

        return JobStatusResponse(stats=stats, jobs=jobs, stale_pending_count=len(stale))

    async def get_job(self, job_id: UUID) -> JobResponse:
        job = await self.store.get(job_id)
        if job is None:
            raise NotFoundError("Job not found", details={"job_id": str(job_id)})
        return JobResponse.model_validate(job)

    async def force_process(self) -> ForceProcessResponse:
        """Dispatch eligible jobs now, bypassing the startup delay."""
        processed = await self.scheduler.force_dispatch()

        logger.info("Force processing triggered", processed_count=processed)
        return ForceProcessResponse(processed_count=processed)

    async def cleanup_stuck(self) -> CleanupStuckResponse:
        report = await self.reaper.scan()

        logger.info(
            "Stuck job cleanup completed",
            reset_count=len(report.reset_ids),
            failed_count=len(report.failed_ids),
            stale_pending_count=len(report.stale_pending_ids),
        )
        return CleanupStuckResponse(
            reset_count=len(report.reset_ids),
            failed_count=len(report.failed_ids),
            stale_pending_ids=report.stale_pending_ids,
        )

    async def cleanup_old(self, retention: timedelta | None = None) -> CleanupResponse:
        """Delete finished jobs older than retention (default from settings)."""
        if retention is None:
            retention = timedelta(hours=self.settings.job_cleanup_after_hours)

        cutoff = self.store.now() - retention
        deleted = await self.store.delete_older_than(cutoff)

        logger.info(
            "Old job cleanup completed",
            deleted_count=deleted,
            cutoff=cutoff.isoformat(),
        )
        return CleanupResponse(deleted_count=deleted, cutoff=cutoff)

    async def retry(self, job_id: UUID) -> JobActionResponse:
        job, changed = await self.store.requeue(
            job_id, reset_attempts=self.settings.job_manual_retry_resets_attempts
        )

        logger.info(
            "Manual retry requested",
            job_id=str(job_id),
            changed=changed,
            attempt_count=job.attempt_count,
        )
        return JobActionResponse(job_id=job.id, status=JobStatus(job.status), changed=changed)

    async def cancel(self, job_id: UUID) -> JobActionResponse:
        job = await self.store.cancel(job_id)
        return JobActionResponse(job_id=job.id, status=JobStatus(job.status))
