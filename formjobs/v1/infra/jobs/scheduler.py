"""
Dispatcher: claims eligible jobs up to the concurrency cap and hands them to
the executor without waiting for them.
"""

import asyncio
import contextvars
from datetime import timedelta

from formjobs.config.logging import get_logger
from formjobs.v1.infra.jobs.models import Job, JobStatus
from formjobs.v1.infra.jobs.periodic import PeriodicTask
from formjobs.v1.infra.jobs.store import JobStore
from formjobs.v1.infra.jobs.worker import JobExecutor

logger = get_logger(__name__)


class JobScheduler(PeriodicTask):
    """
    Periodic dispatcher.

    Each tick promotes retry jobs whose backoff has elapsed, then claims up to
    max_concurrent - processing jobs and starts one task per job. Completion
    is observed only through the store.
    """

    name = "job-scheduler"

    def __init__(
        self,
        store: JobStore,
        executor: JobExecutor,
        max_concurrent: int,
        poll_interval_s: float,
        startup_delay_s: float = 0.0,
        shutdown_grace_s: float = 30.0,
    ):
        super().__init__(poll_interval_s)
        self.store = store
        self.executor = executor
        self.max_concurrent = max_concurrent
        self.startup_delay_s = startup_delay_s
        self.shutdown_grace_s = shutdown_grace_s
        self._in_flight: set[asyncio.Task] = set()

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def run_once(self) -> None:
        await self.tick()

    async def tick(self) -> int:
        """Run one dispatch cycle; returns the number of jobs dispatched."""
        await self.store.promote_due_retries()
        return await self._dispatch_available()

    async def force_dispatch(self, limit: int | None = None) -> int:
        """Dispatch now, ignoring the startup delay but not the concurrency cap."""
        await self.store.promote_due_retries()
        eligible_before = self.store.now() + timedelta(seconds=self.startup_delay_s)
        dispatched = await self._dispatch_available(limit, eligible_before)
        logger.info("Forced dispatch", dispatched_count=dispatched, limit=limit)
        return dispatched

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight executions; True when none are left."""
        if not self._in_flight:
            return True
        _, pending = await asyncio.wait(set(self._in_flight), timeout=timeout)
        return not pending

    async def stop(self) -> None:
        await super().stop()

        if self._in_flight:
            logger.info(
                "Waiting for in-flight jobs",
                active_jobs=len(self._in_flight),
                grace_s=self.shutdown_grace_s,
            )
            _, pending = await asyncio.wait(
                set(self._in_flight), timeout=self.shutdown_grace_s
            )
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning(
                    "Scheduler stopped with active jobs; the reaper will recover them",
                    active_jobs=len(pending),
                )

    async def _dispatch_available(self, limit=None, eligible_before=None) -> int:
        processing = await self.store.count_by_status(JobStatus.PROCESSING)
        available = self.max_concurrent - processing
        if limit is not None:
            available = min(available, limit)

        if available <= 0:
            logger.debug(
                "No dispatch capacity",
                processing=processing,
                max_concurrent=self.max_concurrent,
            )
            return 0

        jobs = await self.store.claim_next_batch(available, eligible_before=eligible_before)
        for job in jobs:
            self._dispatch(job)
        return len(jobs)

    def _dispatch(self, job: Job) -> None:
        # Fresh context so request log context does not follow the job
        task = asyncio.create_task(
            self.executor.execute(job), name=f"job-{job.id}", context=contextvars.Context()
        )
        self._in_flight.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return

        error = task.exception()
        if error is not None:
            # The executor records handler failures itself; this is a store or bug failure
            logger.error(
                "Job task crashed",
                task=task.get_name(),
                error=str(error),
                exc_info=error,
            )
