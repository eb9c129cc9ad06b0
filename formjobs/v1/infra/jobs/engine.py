"""
Job engine: the per-process service object that owns the job system.

Built once by the application (or the CLI worker) with explicit
collaborators, then passed to whatever needs it.
"""

from datetime import timedelta
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from formjobs.config.logging import get_logger
from formjobs.config.settings import Settings
from formjobs.infra.database import Database
from formjobs.v1.core.exceptions import ValidationError
from formjobs.v1.core.registries import JobRegistry
from formjobs.v1.infra.jobs.clients import (
    AIProviderClient,
    ArtifactStore,
    DocumentRenderer,
    LocalArtifactStore,
    OpenAIChatClient,
    TemplateDocumentRenderer,
)
from formjobs.v1.infra.jobs.reaper import StuckJobReaper
from formjobs.v1.infra.jobs.registry_init import register_job_handlers
from formjobs.v1.infra.jobs.retry_policy import RetryPolicy
from formjobs.v1.infra.jobs.scheduler import JobScheduler
from formjobs.v1.infra.jobs.service import JobAdminService
from formjobs.v1.infra.jobs.store import Clock, JobStore, utcnow
from formjobs.v1.infra.jobs.worker import JobExecutor

logger = get_logger(__name__)


class JobEngine:
    """Store, executor, scheduler, reaper and admin service for one process."""

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        registry: JobRegistry,
        retry_policy: RetryPolicy,
        owned_clients: list[Any] | None = None,
    ):
        self.settings = settings
        self.store = store
        self.registry = registry
        self.retry_policy = retry_policy
        self.executor = JobExecutor(
            store, registry, retry_policy, settings.job_execution_timeout_s
        )
        self.scheduler = JobScheduler(
            store,
            self.executor,
            max_concurrent=settings.job_max_concurrent,
            poll_interval_s=settings.job_poll_interval_s,
            startup_delay_s=settings.job_startup_delay_s,
            shutdown_grace_s=settings.job_shutdown_grace_s,
        )
        self.reaper = StuckJobReaper(
            store,
            job_timeout_s=settings.job_stuck_timeout_s,
            stuck_pending_threshold_s=settings.job_stuck_pending_threshold_s,
            interval_s=settings.job_reaper_interval_s,
        )
        self.admin = JobAdminService(settings, store, self.scheduler, self.reaper)
        self._owned_clients = owned_clients or []

    @property
    def running(self) -> bool:
        return self.scheduler.running

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        max_attempts: int | None = None,
        delay_s: float = 0.0,
    ) -> UUID:
        """
        Validate and persist a job for a submission event.

        The job becomes eligible after the startup delay plus delay_s.
        """
        if job_type not in self.registry:
            raise ValidationError(
                f"Unknown job type: {job_type}",
                details={"job_type": job_type, "registered": self.registry.list()},
            )

        handler = self.registry.get(job_type)
        try:
            handler.payload_model.model_validate(payload)
        except PydanticValidationError as e:
            errors = [
                {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError(
                f"Invalid payload for job type {job_type}",
                details={"errors": errors},
            ) from e

        if delay_s < 0:
            raise ValidationError(
                "delay_s must not be negative", details={"delay_s": delay_s}
            )
        if max_attempts is None:
            max_attempts = self.settings.job_default_max_attempts

        # The store rejects max_attempts below 1
        delay = timedelta(seconds=self.settings.job_startup_delay_s + delay_s)
        return await self.store.enqueue(job_type, payload, max_attempts, delay=delay)

    def start(self) -> None:
        """Start the scheduler and reaper loops."""
        self.scheduler.start()
        self.reaper.start()
        logger.info(
            "Job engine started",
            max_concurrent=self.settings.job_max_concurrent,
            poll_interval_s=self.settings.job_poll_interval_s,
            job_types=self.registry.list(),
        )

    async def stop(self) -> None:
        """Stop the loops, give in-flight jobs their grace period, close clients."""
        await self.reaper.stop()
        await self.scheduler.stop()

        for client in self._owned_clients:
            await client.aclose()
        self._owned_clients = []

        logger.info("Job engine stopped")


def build_engine(
    settings: Settings,
    database: Database,
    *,
    clock: Clock = utcnow,
    ai_client: AIProviderClient | None = None,
    renderer: DocumentRenderer | None = None,
    artifact_store: ArtifactStore | None = None,
    registry: JobRegistry | None = None,
) -> JobEngine:
    """
    Wire an engine from settings.

    Passing a registry skips the default handler registration, which is how
    tests plug in their own handlers.
    """
    store = JobStore(
        database.SessionLocal, clock=clock, max_concurrent=settings.job_max_concurrent
    )
    owned_clients = []

    if registry is None:
        registry = JobRegistry()
        if ai_client is None:
            ai_client = OpenAIChatClient(settings.ai_api_base_url, settings.ai_api_key)
            owned_clients.append(ai_client)
        register_job_handlers(
            registry,
            settings,
            ai_client,
            renderer or TemplateDocumentRenderer(),
            artifact_store or LocalArtifactStore(settings.artifact_dir),
        )

    if settings.environment != "development":
        registry.freeze()

    return JobEngine(
        settings,
        store,
        registry,
        RetryPolicy.from_settings(settings),
        owned_clients=owned_clients,
    )
