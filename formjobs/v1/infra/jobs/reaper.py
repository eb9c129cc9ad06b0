"""
Stuck-job detection and recovery.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from uuid import UUID

from formjobs.config.logging import get_logger
from formjobs.v1.core.exceptions import InvalidStateError, NotFoundError
from formjobs.v1.infra.jobs.errors import StuckJobTimeout
from formjobs.v1.infra.jobs.periodic import PeriodicTask
from formjobs.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


@dataclass
class ReapReport:
    reset_ids: list[UUID] = field(default_factory=list)
    failed_ids: list[UUID] = field(default_factory=list)
    stale_pending_ids: list[UUID] = field(default_factory=list)


class StuckJobReaper(PeriodicTask):
    """
    Recovers jobs left in processing by a crashed or hung worker.

    A stuck job with attempts left goes back to pending and consumes an
    attempt; otherwise it fails with a timeout error. Pending jobs that wait
    too long are only reported: that points at dispatch starvation, not a
    dead worker.
    """

    name = "stuck-job-reaper"

    def __init__(
        self,
        store: JobStore,
        job_timeout_s: float,
        stuck_pending_threshold_s: float,
        interval_s: float,
    ):
        super().__init__(interval_s)
        self.store = store
        self.job_timeout_s = job_timeout_s
        self.stuck_pending_threshold_s = stuck_pending_threshold_s

    async def run_once(self) -> None:
        await self.scan()

    async def scan(self) -> ReapReport:
        report = ReapReport()

        stuck_jobs = await self.store.reclaim_stuck(timedelta(seconds=self.job_timeout_s))
        for job in stuck_jobs:
            error = StuckJobTimeout(
                f"Job exceeded {self.job_timeout_s:g}s in processing"
            )
            try:
                if job.attempt_count < job.max_attempts:
                    await self.store.release_stuck(
                        job.id, job.owner_token, error.message, error.error_code
                    )
                    report.reset_ids.append(job.id)
                else:
                    await self.store.mark_failed(
                        job.id, job.owner_token, error.message, error.error_code
                    )
                    report.failed_ids.append(job.id)
            except (InvalidStateError, NotFoundError):
                # The worker finished (or someone else reaped it) in the meantime
                logger.debug("Stuck job changed before recovery", job_id=str(job.id))

        if report.reset_ids or report.failed_ids:
            logger.warning(
                "Recovered stuck jobs",
                reset_count=len(report.reset_ids),
                failed_count=len(report.failed_ids),
                timeout_seconds=self.job_timeout_s,
            )

        stale = await self.store.find_stale_pending(
            timedelta(seconds=self.stuck_pending_threshold_s)
        )
        report.stale_pending_ids = [job.id for job in stale]
        if stale:
            logger.warning(
                "Pending jobs waiting longer than threshold; check the scheduler "
                "is running and the concurrency cap",
                stale_count=len(stale),
                threshold_seconds=self.stuck_pending_threshold_s,
                job_ids=[str(job_id) for job_id in report.stale_pending_ids[:20]],
            )

        return report
