"""
Job executor: runs one claimed job and records the outcome in the store.
"""

import asyncio
from typing import Any

from formjobs.config.logging import get_logger, job_context
from formjobs.v1.core.exceptions import InvalidStateError, NotFoundError
from formjobs.v1.core.registries import JobRegistry
from formjobs.v1.infra.jobs.errors import (
    ExecutionError,
    ExecutionTimeoutError,
    UnknownJobTypeError,
)
from formjobs.v1.infra.jobs.models import Job, JobStatus
from formjobs.v1.infra.jobs.retry_policy import ErrorClass, RetryPolicy
from formjobs.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


class JobExecutor:
    """
    Runs claimed jobs through their registered handler.

    processing -> completed | failed | retry. Every failure is captured in
    the job record; nothing a handler raises escapes execute().
    """

    def __init__(
        self,
        store: JobStore,
        registry: JobRegistry,
        retry_policy: RetryPolicy,
        execution_timeout_s: float,
    ):
        self.store = store
        self.registry = registry
        self.retry_policy = retry_policy
        self.execution_timeout_s = execution_timeout_s

    async def execute(self, job: Job) -> JobStatus | None:
        """
        Execute a claimed job.

        Returns the status recorded for the job, or None when the job was
        taken away from this worker (e.g. reaped) before the outcome landed.
        """
        with job_context(
            str(job.id),
            job.job_type,
            attempt=job.attempt_count + 1,
            max_attempts=job.max_attempts,
        ):
            logger.info("Processing job started")

            try:
                result = await self._run_handler(job)
            except asyncio.CancelledError:
                # Left in processing; the reaper recovers it after the stuck timeout
                logger.warning("Job execution cancelled")
                raise
            except Exception as e:
                return await self._handle_failure(job, e)

            try:
                await self.store.mark_completed(job.id, job.owner_token, result)
            except (InvalidStateError, NotFoundError) as e:
                logger.warning("Job finished after losing ownership", error=e.message)
                return None

            logger.info("Processing job completed successfully")
            return JobStatus.COMPLETED

    async def _run_handler(self, job: Job) -> dict[str, Any] | None:
        try:
            handler = self.registry.get(job.job_type)
        except KeyError:
            raise UnknownJobTypeError(f"No handler registered for job type '{job.job_type}'")

        try:
            result = await asyncio.wait_for(
                handler.run(dict(job.payload or {})), timeout=self.execution_timeout_s
            )
        except asyncio.TimeoutError:
            raise ExecutionTimeoutError(
                f"Job timed out after {self.execution_timeout_s:g}s"
            ) from None

        if result is not None and not isinstance(result, dict):
            result = {"value": result}
        return result

    async def _handle_failure(self, job: Job, error: Exception) -> JobStatus | None:
        error_class = self.retry_policy.classify(error)
        message = _describe(error)
        error_code = error.error_code if isinstance(error, ExecutionError) else None
        attempts_after = job.attempt_count + 1

        logger.error(
            "Job processing failed",
            error=message,
            error_class=error_class.value,
            exc_info=error,
        )

        try:
            if error_class == ErrorClass.TRANSIENT and attempts_after < job.max_attempts:
                next_run = self.store.now() + self.retry_policy.backoff(attempts_after)
                await self.store.mark_retry(
                    job.id,
                    job.owner_token,
                    message,
                    next_run,
                    error_code=error_code or "RETRY_SCHEDULED",
                )
                logger.info(
                    "Job scheduled for retry", next_scheduled_for=next_run.isoformat()
                )
                return JobStatus.RETRY

            await self.store.mark_failed(
                job.id,
                job.owner_token,
                message,
                error_code=error_code
                or ("PERMANENT_ERROR" if error_class == ErrorClass.PERMANENT else "RETRIES_EXHAUSTED"),
            )
        except (InvalidStateError, NotFoundError) as e:
            logger.warning("Job failed after losing ownership", error=e.message)
            return None

        logger.error("Job failed", error_class=error_class.value)
        return JobStatus.FAILED


def _describe(error: BaseException) -> str:
    text = str(error).strip()
    return f"{type(error).__name__}: {text}" if text else type(error).__name__
