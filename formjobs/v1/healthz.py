from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from formjobs.config.logging import get_logger
from formjobs.config.settings import Settings, SettingsDep
from formjobs.infra.database import SessionDep
from formjobs.v1.core.exceptions import create_success_response

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class WorkerHealth(BaseModel):
    """Job engine health status."""

    jobs_enabled: bool
    scheduler_running: bool = False
    reaper_running: bool = False
    in_flight_jobs: int = 0
    processing_jobs: int = 0
    stuck_jobs_count: int = 0
    queue_depth: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    request: Request,
    settings: Settings = SettingsDep,
    session: AsyncSession = SessionDep,
):
    """Health check with database and job engine status."""

    timestamp = datetime.now(UTC).isoformat()
    overall_ok = True

    db_health = await _check_database_health(session)
    if not db_health.connected:
        overall_ok = False

    worker_health = None
    engine = getattr(request.app.state, "engine", None)
    if engine is not None:
        try:
            worker_health = await _check_worker_health(engine, settings)
        except Exception as e:
            # Engine health failure doesn't fail overall health
            logger.warning("Worker health check failed", error=str(e))
            worker_health = WorkerHealth(jobs_enabled=settings.jobs_enabled)

    health_data = {
        "ok": overall_ok,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "worker": worker_health.model_dump() if worker_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_worker_health(engine, settings: Settings) -> WorkerHealth:
    """Check scheduler/reaper state and queue status."""
    stats = await engine.store.get_statistics()
    stuck_jobs = await engine.store.reclaim_stuck(
        timedelta(seconds=settings.job_stuck_timeout_s)
    )

    return WorkerHealth(
        jobs_enabled=settings.jobs_enabled,
        scheduler_running=engine.scheduler.running,
        reaper_running=engine.reaper.running,
        in_flight_jobs=engine.scheduler.in_flight_count,
        processing_jobs=stats.processing,
        stuck_jobs_count=len(stuck_jobs),
        queue_depth=stats.queue_depth,
    )
