"""
Job handlers for form-submission processing.

Each handler implements the JobHandler protocol: a pydantic payload model
checked at enqueue time and an async run() called by the executor.
"""

from typing import Any, ClassVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from formjobs.config.logging import get_logger
from formjobs.v1.infra.jobs.clients import (
    AIProviderClient,
    ArtifactStore,
    DocumentRenderer,
)
from formjobs.v1.infra.jobs.errors import InvalidPayloadError

logger = get_logger(__name__)


class AIGenerationPayload(BaseModel):
    prompt: str = Field(..., min_length=1)
    system_prompt: str | None = None
    model: str | None = None
    max_tokens: int = Field(default=1000, ge=1, le=32000)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    prompt_id: int | str | None = None
    form_id: int | str | None = None
    entry_id: int | str | None = None


class DocumentRenderPayload(BaseModel):
    template: str = Field(..., min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)
    filename: str = Field(default="document.txt", min_length=1, max_length=200)
    entry_id: int | str | None = None


def _parse(model: type[BaseModel], payload: dict[str, Any]) -> Any:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise InvalidPayloadError(f"Invalid payload: {e.error_count()} error(s)") from e


class AIGenerationHandler:
    """
    Sends a rendered form prompt to the AI provider.

    Payload expected:
    {
        "prompt": "rendered prompt text",
        "model": "gpt-4o-mini",   # optional, defaults to settings
        "prompt_id": 12, "form_id": 3, "entry_id": 881   # optional
    }
    """

    payload_model: ClassVar[type[BaseModel]] = AIGenerationPayload

    def __init__(self, client: AIProviderClient, default_model: str, timeout_s: float):
        self.client = client
        self.default_model = default_model
        self.timeout_s = timeout_s

    async def run(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        data = _parse(AIGenerationPayload, payload)
        model = data.model or self.default_model

        completion = await self.client.generate(
            data.prompt,
            model,
            self.timeout_s,
            system_prompt=data.system_prompt,
            max_tokens=data.max_tokens,
            temperature=data.temperature,
        )

        logger.info(
            "AI response generated",
            model=completion.model,
            entry_id=data.entry_id,
            prompt_id=data.prompt_id,
            response_chars=len(completion.text),
        )

        return {
            "text": completion.text,
            "model": completion.model,
            "usage": completion.usage,
            "prompt_id": data.prompt_id,
            "form_id": data.form_id,
            "entry_id": data.entry_id,
        }


class DocumentRenderHandler:
    """Renders a template with submission data and stores the document."""

    payload_model: ClassVar[type[BaseModel]] = DocumentRenderPayload

    def __init__(
        self, renderer: DocumentRenderer, artifacts: ArtifactStore, timeout_s: float
    ):
        self.renderer = renderer
        self.artifacts = artifacts
        self.timeout_s = timeout_s

    async def run(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        data = _parse(DocumentRenderPayload, payload)

        document = await self.renderer.render(data.template, data.context, self.timeout_s)
        reference = await self.artifacts.save(data.filename, document)

        logger.info(
            "Document rendered",
            artifact_reference=reference,
            size_bytes=len(document),
            entry_id=data.entry_id,
        )

        return {
            "artifact_reference": reference,
            "size_bytes": len(document),
            "entry_id": data.entry_id,
        }
