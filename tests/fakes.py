"""Test doubles shared across the suite."""

from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict

from formjobs.v1.infra.jobs.clients import Completion


class FakeClock:
    """Deterministic clock; tests move time with advance()."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 5, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.current += timedelta(seconds=seconds, **kwargs)
        return self.current


class AnyPayload(BaseModel):
    model_config = ConfigDict(extra="allow")


class ScriptedHandler:
    """
    Test handler; each run pops the next scripted outcome.

    An exception instance is raised, anything else is returned. With no
    script left it echoes the payload.
    """

    payload_model = AnyPayload

    def __init__(self, outcomes: list[Any] | None = None):
        self.outcomes = list(outcomes or [])
        self.calls: list[dict[str, Any]] = []

    async def run(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        self.calls.append(payload)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return {"echo": payload}


class FakeAIClient:
    """AI provider double recording every prompt it receives."""

    def __init__(self, text: str = "Generated response", error: Exception | None = None):
        self.text = text
        self.error = error
        self.requests: list[dict[str, Any]] = []

    async def generate(self, prompt, model, timeout_s, **options) -> Completion:
        self.requests.append({"prompt": prompt, "model": model, "timeout_s": timeout_s, **options})
        if self.error is not None:
            raise self.error
        return Completion(
            text=self.text,
            model=model,
            usage={"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
        )
