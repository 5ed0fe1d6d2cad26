"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func, update

from job_discovery import __version__
from job_discovery.api import router as api_router
from job_discovery.config import get_settings
from job_discovery.db.models import BackgroundJob, DiscoveryRun
from job_discovery.db.session import async_session_factory
from job_discovery.workers.tasks import build_pipeline, create_broker

settings = get_settings()
logger = structlog.get_logger()

# Initialize Sentry if configured
if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        traces_sample_rate=0.1 if settings.is_production else 1.0,
    )


async def cleanup_orphaned_runs(session_factory, in_process_queue: bool) -> None:
    """Mark work left 'running' by a previous process as failed.

    In-process queue units die with the process, so their pending and
    running log rows are failed too. Broker units are redelivered and left alone.
    """
    async with session_factory() as session:
        result = await session.execute(
            update(DiscoveryRun)
            .where(DiscoveryRun.status == "running")
            .values(
                status="failed",
                error_message="Interrupted by server restart",
                completed_at=func.now(),
            )
        )
        discovery_count = result.rowcount

        queue_count = 0
        if in_process_queue:
            result = await session.execute(
                update(BackgroundJob)
                .where(BackgroundJob.status.in_(["pending", "running"]))
                .values(
                    status="failed",
                    error_message="Interrupted by server restart",
                    completed_at=func.now(),
                )
            )
            queue_count = result.rowcount

        await session.commit()

        if discovery_count or queue_count:
            logger.info(
                "Cleaned up orphaned runs",
                discovery=discovery_count,
                work_units=queue_count,
            )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting job discovery API", environment=settings.environment)
    queue, registry = build_pipeline(async_session_factory, create_broker(settings.redis_url), settings)
    await cleanup_orphaned_runs(async_session_factory, in_process_queue=queue.broker is None)
    await registry.initialize(create_missing=True)

    app.state.queue = queue
    app.state.registry = registry
    yield

    # Shutdown
    logger.info("Shutting down job discovery API")
    await queue.wait_until_idle()
    await registry.close()


app = FastAPI(
    title="Job Discovery API",
    description="Multi-source job discovery and pipeline queue",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix="/api")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}
