"""
Job registry initialization.

Registers the form-processing handlers with an engine's job registry.
"""


from formjobs.config.logging import get_logger
from formjobs.config.settings import Settings
from formjobs.v1.core.registries import JobRegistry
from formjobs.v1.infra.jobs.clients import (
    AIProviderClient,
    ArtifactStore,
    DocumentRenderer,
)
from formjobs.v1.infra.jobs.handlers import AIGenerationHandler, DocumentRenderHandler

logger = get_logger(__name__)

AI_GENERATION = "ai_generation"
DOCUMENT_RENDER = "document_render"


def register_job_handlers(
    registry: JobRegistry,
    settings: Settings,
    ai_client: AIProviderClient,
    renderer: DocumentRenderer,
    artifacts: ArtifactStore,
) -> None:
    """Register all job handlers with the job registry."""

    logger.info("Registering job handlers")

    timeout_s = settings.job_execution_timeout_s

    registry.register(
        AI_GENERATION,
        AIGenerationHandler(ai_client, settings.ai_default_model, timeout_s),
    )
    registry.register(
        DOCUMENT_RENDER, DocumentRenderHandler(renderer, artifacts, timeout_s)
    )

    logger.info("Job handlers registered", registered_handlers=registry.list())
