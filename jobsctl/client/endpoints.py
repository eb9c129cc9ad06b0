"""API Endpoint Wrappers"""

from typing import Any

import httpx

from ..utils.config_manager import config
from .base import APIClient


class JobsClient:
    """High-level client with one method per job endpoint"""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_token = token or api_config.get("token")

        headers = {}
        if final_token:
            headers["Authorization"] = f"Bearer {final_token}"
        if api_config.get("user_id"):
            headers["X-User-ID"] = str(api_config["user_id"])

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=headers,
            transport=transport,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    def health_check(self) -> dict[str, Any]:
        return self.api.get("/healthz")

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        max_attempts: int | None = None,
        delay_s: float = 0.0,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"job_type": job_type, "payload": payload, "delay_s": delay_s}
        if max_attempts is not None:
            body["max_attempts"] = max_attempts
        return self.api.post("/jobs", json=body)

    def status(self, quiet: bool = False) -> dict[str, Any]:
        return self.api.get("/jobs/status", params={"quiet": str(quiet).lower()})

    def get_job(self, job_id: str) -> dict[str, Any]:
        return self.api.get(f"/jobs/{job_id}")

    def force_process(self) -> dict[str, Any]:
        return self.api.post("/jobs/force-process")

    def cleanup_stuck(self) -> dict[str, Any]:
        return self.api.post("/jobs/cleanup-stuck")

    def cleanup(self, retention_hours: float | None = None) -> dict[str, Any]:
        params = {"retention_hours": retention_hours} if retention_hours else None
        return self.api.post("/jobs/cleanup", params=params)

    def retry(self, job_id: str) -> dict[str, Any]:
        return self.api.post(f"/jobs/{job_id}/retry")

    def cancel(self, job_id: str) -> dict[str, Any]:
        return self.api.post(f"/jobs/{job_id}/cancel")
