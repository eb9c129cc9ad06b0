"""
Execution collaborators used by job handlers.

Handlers depend on the protocols below; the engine wires in the httpx-based
AI client, the placeholder template renderer and the local artifact store
unless tests or callers supply their own.
"""

import asyncio
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

import httpx

from formjobs.config.logging import get_logger
from formjobs.v1.infra.jobs.errors import (
    ExecutionTimeoutError,
    InvalidPayloadError,
    PermanentExecutionError,
    TransientExecutionError,
    error_from_status,
)

logger = get_logger(__name__)


@dataclass
class Completion:
    text: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)


class AIProviderClient(Protocol):
    async def generate(
        self,
        prompt: str,
        model: str,
        timeout_s: float,
        *,
        system_prompt: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> Completion: ...


class DocumentRenderer(Protocol):
    async def render(
        self, template: str, context: dict[str, Any], timeout_s: float
    ) -> bytes: ...


class ArtifactStore(Protocol):
    async def save(self, name: str, data: bytes) -> str: ...


class OpenAIChatClient:
    """
    Chat-completions client for OpenAI-compatible providers.

    Transport failures and HTTP statuses are translated into execution errors
    so the retry policy sees transient vs permanent failures.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        http_client: httpx.AsyncClient | None = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers
        )

    async def generate(
        self,
        prompt: str,
        model: str,
        timeout_s: float,
        *,
        system_prompt: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> Completion:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        body = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        try:
            response = await self.client.post(
                "/chat/completions", json=body, timeout=timeout_s
            )
        except httpx.TimeoutException as e:
            raise ExecutionTimeoutError(f"AI provider timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientExecutionError(f"AI provider unreachable: {e}") from e

        if response.status_code >= 400:
            raise error_from_status(
                response.status_code,
                f"AI provider returned {response.status_code}: {_error_text(response)}",
            )

        try:
            data = response.json()
            text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise PermanentExecutionError(f"Unexpected AI provider response: {e}") from e

        usage = data.get("usage") or {}
        return Completion(
            text=text or "",
            model=data.get("model", model),
            usage={k: v for k, v in usage.items() if isinstance(v, int)},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def _error_text(response: httpx.Response) -> str:
    try:
        error = response.json().get("error")
    except ValueError:
        return response.text[:200]
    if isinstance(error, dict):
        return str(error.get("message", error))
    return str(error or response.text[:200])


# [FIELD_NAME] and {variable} placeholders
_PLACEHOLDER = re.compile(r"\[([A-Za-z0-9_.-]+)\]|\{([A-Za-z0-9_.-]+)\}")


class TemplateDocumentRenderer:
    """Fills template placeholders from the context and encodes the result as UTF-8."""

    def __init__(self, strict: bool = False):
        self.strict = strict

    async def render(
        self, template: str, context: dict[str, Any], timeout_s: float
    ) -> bytes:
        lookup = {str(k).lower(): v for k, v in context.items()}
        missing: list[str] = []

        def substitute(match: re.Match) -> str:
            key = match.group(1) or match.group(2)
            value = lookup.get(key.lower())
            if value is None:
                missing.append(key)
                return match.group(0)
            if isinstance(value, list):
                return ", ".join(str(v) for v in value)
            return str(value)

        rendered = _PLACEHOLDER.sub(substitute, template)
        if missing and self.strict:
            raise InvalidPayloadError(
                f"Template placeholders without context values: {', '.join(missing)}"
            )
        return rendered.encode("utf-8")


class LocalArtifactStore:
    """Writes artifacts under a directory and returns a relative reference."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    async def save(self, name: str, data: bytes) -> str:
        safe_name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._") or "artifact"
        reference = f"{uuid4().hex[:12]}-{safe_name}"
        path = self.directory / reference

        await asyncio.to_thread(self._write, path, data)
        logger.info("Stored artifact", reference=reference, size_bytes=len(data))
        return reference

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
