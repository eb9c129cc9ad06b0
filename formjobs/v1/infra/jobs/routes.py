"""
Job API endpoints.

Ingress for submission events plus the admin endpoints behind the
dashboard. Mutating endpoints honour an Idempotency-Key header so clients
can retry them safely.
"""

from datetime import timedelta
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from formjobs.config.logging import get_logger
from formjobs.config.settings import Settings, SettingsDep
from formjobs.infra.database import SessionDep
from formjobs.v1.core.exceptions import create_success_response
from formjobs.v1.core.idempotency import get_idempotency_key, handle_idempotent_request
from formjobs.v1.core.security import AdminDep, Principal, PrincipalDep
from formjobs.v1.infra.jobs.engine import JobEngine
from formjobs.v1.infra.jobs.schemas import JobCreate, JobEnqueueResponse

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_engine(request: Request) -> JobEngine:
    """Return the job engine owned by the running application."""
    return request.app.state.engine


EngineDep = Depends(get_engine)


def _envelope(request: Request, data: dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=create_success_response(
            data=data, request_id=getattr(request.state, "request_id", None)
        ),
    )


@router.post("", response_model=dict)
async def enqueue_job(
    job_request: JobCreate,
    request: Request,
    principal: Principal = PrincipalDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
    engine: JobEngine = EngineDep,
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> JSONResponse:
    """Enqueue a job for a submission event. Returns without executing it."""

    async def handler():
        job_id = await engine.enqueue(
            job_request.job_type,
            job_request.payload,
            max_attempts=job_request.max_attempts,
            delay_s=job_request.delay_s,
        )
        job = await engine.store.get(job_id)

        logger.info(
            "Job enqueued via API",
            job_id=str(job_id),
            job_type=job_request.job_type,
            user_id=principal.user_id,
        )

        response = JobEnqueueResponse(
            job_id=job_id, status=job.status, scheduled_for=job.scheduled_for
        )
        return response.model_dump(mode="json"), 201

    data, status_code = await handle_idempotent_request(
        session,
        principal,
        "POST:/jobs",
        idempotency_key,
        handler,
        ttl_hours=settings.idempotency_ttl_hours,
    )
    return _envelope(request, data, status_code)


@router.get("/status", response_model=dict)
async def get_job_status(
    request: Request,
    quiet: bool = Query(default=False, description="Counts only, no job list"),
    principal: Principal = AdminDep,
    engine: JobEngine = EngineDep,
) -> JSONResponse:
    """Job statistics and recent jobs for the dashboard."""
    status = await engine.admin.get_status(quiet=quiet)
    return _envelope(request, status.model_dump(mode="json", exclude_none=quiet))


@router.post("/force-process", response_model=dict)
async def force_process_jobs(
    request: Request,
    principal: Principal = AdminDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
    engine: JobEngine = EngineDep,
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> JSONResponse:
    """Dispatch eligible jobs immediately, within the concurrency cap."""

    async def handler():
        result = await engine.admin.force_process()
        return result.model_dump(mode="json"), 200

    data, status_code = await handle_idempotent_request(
        session,
        principal,
        "POST:/jobs/force-process",
        idempotency_key,
        handler,
        ttl_hours=settings.idempotency_ttl_hours,
    )
    return _envelope(request, data, status_code)


@router.post("/cleanup-stuck", response_model=dict)
async def cleanup_stuck_jobs(
    request: Request,
    principal: Principal = AdminDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
    engine: JobEngine = EngineDep,
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> JSONResponse:
    """Recover jobs stuck in processing."""

    async def handler():
        result = await engine.admin.cleanup_stuck()
        return result.model_dump(mode="json"), 200

    data, status_code = await handle_idempotent_request(
        session,
        principal,
        "POST:/jobs/cleanup-stuck",
        idempotency_key,
        handler,
        ttl_hours=settings.idempotency_ttl_hours,
    )
    return _envelope(request, data, status_code)


@router.post("/cleanup", response_model=dict)
async def cleanup_jobs(
    request: Request,
    retention_hours: float | None = Query(
        default=None, gt=0, description="Delete finished jobs older than this"
    ),
    principal: Principal = AdminDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
    engine: JobEngine = EngineDep,
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> JSONResponse:
    """Delete completed, failed and cancelled jobs past the retention window."""
    retention = timedelta(hours=retention_hours) if retention_hours else None

    async def handler():
        result = await engine.admin.cleanup_old(retention)
        return result.model_dump(mode="json"), 200

    data, status_code = await handle_idempotent_request(
        session,
        principal,
        f"POST:/jobs/cleanup?retention_hours={retention_hours}",
        idempotency_key,
        handler,
        ttl_hours=settings.idempotency_ttl_hours,
    )
    return _envelope(request, data, status_code)


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    request: Request,
    principal: Principal = AdminDep,
    engine: JobEngine = EngineDep,
) -> JSONResponse:
    """Get a single job."""
    job = await engine.admin.get_job(job_id)
    return _envelope(request, job.model_dump(mode="json"))


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(
    job_id: UUID,
    request: Request,
    principal: Principal = AdminDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
    engine: JobEngine = EngineDep,
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> JSONResponse:
    """Requeue a failed or retry job; repeating it on a pending job is a no-op."""

    async def handler():
        result = await engine.admin.retry(job_id)
        return result.model_dump(mode="json"), 200

    data, status_code = await handle_idempotent_request(
        session,
        principal,
        f"POST:/jobs/{job_id}/retry",
        idempotency_key,
        handler,
        ttl_hours=settings.idempotency_ttl_hours,
    )
    return _envelope(request, data, status_code)


@router.post("/{job_id}/cancel", response_model=dict)
async def cancel_job(
    job_id: UUID,
    request: Request,
    principal: Principal = AdminDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
    engine: JobEngine = EngineDep,
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> JSONResponse:
    """Cancel a pending job."""

    async def handler():
        result = await engine.admin.cancel(job_id)
        return result.model_dump(mode="json"), 200

    data, status_code = await handle_idempotent_request(
        session,
        principal,
        f"POST:/jobs/{job_id}/cancel",
        idempotency_key,
        handler,
        ttl_hours=settings.idempotency_ttl_hours,
    )
    return _envelope(request, data, status_code)

