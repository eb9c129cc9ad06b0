"""Base HTTP Client for the Form Jobs API"""

import uuid
from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel

console = Console(stderr=True)


class JobsCtlError(Exception):
    """Base exception for Form Jobs API errors"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class APIClient:
    """HTTP client for the Form Jobs API"""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_headers = headers or {}
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers=self.default_headers,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """Handle API response and extract data"""
        try:
            data = response.json()
        except ValueError:
            raise JobsCtlError(
                f"Invalid JSON response: {response.status_code}", response.status_code
            ) from None

        if response.status_code >= 400:
            error = data.get("error", {}) if isinstance(data, dict) else {}
            error_msg = error.get("message", "Unknown error")
            error_code = error.get("code")
            title = f"API Error ({error_code})" if error_code else "API Error"
            console.print(Panel(f"[red]{error_msg}[/red]", title=title))
            raise JobsCtlError(
                f"API Error {response.status_code}: {error_msg}",
                response.status_code,
                error_code,
            )

        # Envelope format (with "ok" field)
        if "ok" in data:
            if not data.get("ok", False):
                error_msg = data.get("error", {}).get("message", "Request failed")
                raise JobsCtlError(error_msg, response.status_code)
            return data.get("data") or {}

        return data

    def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make GET request"""
        try:
            response = self.client.get(f"/v1{path}", params=params)
        except httpx.RequestError as e:
            raise JobsCtlError(f"Connection failed: {e}") from None
        return self._handle_response(response)

    def post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Make POST request; every call carries an Idempotency-Key"""
        headers = {"Idempotency-Key": idempotency_key or str(uuid.uuid4())}
        try:
            response = self.client.post(
                f"/v1{path}", json=json, params=params, headers=headers
            )
        except httpx.RequestError as e:
            raise JobsCtlError(f"Connection failed: {e}") from None
        return self._handle_response(response)
