import os
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from formjobs.config.settings import Settings
from formjobs.infra.database import Base, Database
from formjobs.main import create_app
from formjobs.v1.core.registries import JobRegistry
from formjobs.v1.infra.jobs.engine import JobEngine, build_engine
from formjobs.v1.infra.jobs.retry_policy import RetryPolicy
from formjobs.v1.infra.jobs.store import JobStore
from formjobs.v1.infra.jobs.worker import JobExecutor

# Import models to ensure they're registered
from formjobs.v1.core import idempotency  # noqa: F401
from formjobs.v1.infra.jobs import models  # noqa: F401
from tests.fakes import FakeClock, ScriptedHandler


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for a throwaway database with the background loops off."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url or "postgresql" not in database_url:
        database_url = f"sqlite+aiosqlite:///{tmp_path}/jobs.db"

    return Settings(
        database_url=database_url,
        jobs_enabled=False,
        job_startup_delay_s=0,
        job_max_concurrent=3,
        job_execution_timeout_s=5,
        job_stuck_timeout_s=300,
        job_stuck_pending_threshold_s=600,
        artifact_dir=str(tmp_path / "artifacts"),
    )


@pytest.fixture
async def database(test_settings) -> AsyncGenerator[Database, None]:
    db = Database(test_settings)
    await db.create_all()
    yield db
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await db.close()


@pytest.fixture
def store(database, clock) -> JobStore:
    """Store without a concurrency cap."""
    return JobStore(database.SessionLocal, clock=clock)


@pytest.fixture
def handler() -> ScriptedHandler:
    return ScriptedHandler()


@pytest.fixture
def registry(handler) -> JobRegistry:
    registry = JobRegistry()
    registry.register("echo", handler)
    return registry


@pytest.fixture
def executor(store, registry) -> JobExecutor:
    return JobExecutor(store, registry, RetryPolicy(), execution_timeout_s=1.0)


@pytest.fixture
async def engine(test_settings, database, clock, registry) -> AsyncGenerator[JobEngine, None]:
    job_engine = build_engine(test_settings, database, clock=clock, registry=registry)
    yield job_engine
    await job_engine.stop()


@pytest.fixture
def app(test_settings, database, engine):
    """Application wired to the test database and engine."""
    app = create_app(test_settings, database=database, engine=engine)
    # ASGITransport does not run the lifespan
    app.state.database = database
    app.state.engine = engine
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
