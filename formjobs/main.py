from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from formjobs.config.logging import get_logger, setup_logging
from formjobs.config.settings import Settings, get_settings, settings as default_settings
from formjobs.infra.database import Database
from formjobs.v1.core.exceptions import RequestContextMiddleware, register_exception_handlers
from formjobs.v1.healthz import router as health_router
from formjobs.v1.infra.jobs.engine import JobEngine, build_engine
from formjobs.v1.infra.jobs.routes import router as jobs_router

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    engine: JobEngine | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The database and job engine are built in the lifespan unless supplied;
    supplied ones are left for the caller to close.
    """
    settings = settings or default_settings

    # Initialize structured logging
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = database or Database(settings)
        if settings.database_url.startswith("sqlite"):
            # No migrations for local SQLite files
            await db.create_all()

        job_engine = engine or build_engine(settings, db)
        app.state.database = db
        app.state.engine = job_engine

        if settings.jobs_enabled:
            job_engine.start()
        else:
            logger.info("Background job processing disabled")

        try:
            yield
        finally:
            if engine is None:
                await job_engine.stop()
            if database is None:
                await db.close()

    app = FastAPI(
        title=settings.app_name,
        description="Background job processing for form submissions",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        # All endpoints are under the /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )
    app.state.settings = settings

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")

    if settings is not default_settings:
        app.dependency_overrides[get_settings] = lambda: settings

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "formjobs.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        workers=1 if default_settings.debug else default_settings.workers,
    )
