import json

import httpx
import pytest

from formjobs.v1.infra.jobs.clients import (
    LocalArtifactStore,
    OpenAIChatClient,
    TemplateDocumentRenderer,
)
from formjobs.v1.infra.jobs.errors import (
    AuthenticationFailedError,
    ExecutionTimeoutError,
    InvalidPayloadError,
    PermanentExecutionError,
    RateLimitedError,
    TransientExecutionError,
)


def _client(handler) -> OpenAIChatClient:
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://ai.test/v1"
    )
    return OpenAIChatClient("https://ai.test/v1", "sk-test", http_client=http_client)


def _respond(status_code, body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body)

    return handler


class TestOpenAIChatClient:
    async def test_generate_sends_chat_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "model": "gpt-4o-mini-2024",
                    "choices": [{"message": {"role": "assistant", "content": "Hello Ada"}}],
                    "usage": {"prompt_tokens": 9, "completion_tokens": 2, "total_tokens": 11},
                },
            )

        completion = await _client(handler).generate(
            "Greet [NAME]", "gpt-4o-mini", 5, system_prompt="Be brief", max_tokens=50
        )

        assert seen["url"] == "https://ai.test/v1/chat/completions"
        assert seen["body"]["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Greet [NAME]"},
        ]
        assert seen["body"]["max_tokens"] == 50
        assert completion.text == "Hello Ada"
        assert completion.model == "gpt-4o-mini-2024"
        assert completion.usage["total_tokens"] == 11

    @pytest.mark.parametrize(
        "status_code, error_type",
        [
            (401, AuthenticationFailedError),
            (429, RateLimitedError),
            (503, TransientExecutionError),
            (400, PermanentExecutionError),
        ],
    )
    async def test_http_errors_are_classified(self, status_code, error_type):
        client = _client(_respond(status_code, {"error": {"message": "provider says no"}}))

        with pytest.raises(error_type) as exc_info:
            await client.generate("hi", "gpt-4o-mini", 5)

        assert exc_info.value.status_code == status_code
        assert "provider says no" in exc_info.value.message

    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(ExecutionTimeoutError):
            await _client(handler).generate("hi", "gpt-4o-mini", 0.1)

    async def test_connection_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientExecutionError):
            await _client(handler).generate("hi", "gpt-4o-mini", 5)

    async def test_malformed_response_is_permanent(self):
        client = _client(_respond(200, {"choices": []}))

        with pytest.raises(PermanentExecutionError, match="Unexpected AI provider response"):
            await client.generate("hi", "gpt-4o-mini", 5)


class TestTemplateDocumentRenderer:
    async def test_fills_both_placeholder_styles(self):
        renderer = TemplateDocumentRenderer()

        document = await renderer.render(
            "Dear [Name], your {plan} plan covers: [items]",
            {"name": "Ada", "PLAN": "annual", "items": ["hosting", "support"]},
            timeout_s=5,
        )

        assert document == "Dear Ada, your annual plan covers: hosting, support".encode()

    async def test_missing_values_are_left_in_place(self):
        document = await TemplateDocumentRenderer().render("Hi [NAME]", {}, timeout_s=5)

        assert document == b"Hi [NAME]"

    async def test_strict_mode_rejects_missing_values(self):
        renderer = TemplateDocumentRenderer(strict=True)

        with pytest.raises(InvalidPayloadError, match="NAME"):
            await renderer.render("Hi [NAME]", {}, timeout_s=5)


class TestLocalArtifactStore:
    async def test_save_writes_file_under_directory(self, tmp_path):
        artifacts = LocalArtifactStore(tmp_path / "out")

        reference = await artifacts.save("../../etc/passwd report.txt", b"contents")

        path = tmp_path / "out" / reference
        assert path.read_bytes() == b"contents"
        assert "/" not in reference
        assert reference.endswith("etc_passwd_report.txt")
