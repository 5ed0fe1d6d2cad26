"""Periodic jobs using APScheduler."""

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from job_discovery.config import Settings, get_settings
from job_discovery.engines.pipeline.lifecycle import sweep_expired_offers
from job_discovery.queue.service import QueueService
from job_discovery.workers.tasks import enqueue_scheduled_discovery

logger = structlog.get_logger()

scheduler = AsyncIOScheduler()


def setup_scheduler(
    queue: QueueService,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[Settings] = None,
) -> AsyncIOScheduler:
    """Configure the periodic jobs."""
    settings = settings or get_settings()

    # Expire stale open offers
    scheduler.add_job(
        sweep_expired_offers,
        trigger=IntervalTrigger(hours=settings.expiry_sweep_interval_hours),
        args=[session_factory, settings.job_max_age_days],
        id="expiry_sweep",
        name="Expire stale job offers",
        replace_existing=True,
    )

    # Re-run discovery for every active campaign
    scheduler.add_job(
        enqueue_scheduled_discovery,
        trigger=IntervalTrigger(hours=settings.scheduled_discovery_interval_hours),
        args=[queue, session_factory],
        id="scheduled_discovery",
        name="Discovery for active campaigns",
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured with jobs",
        expiry_hours=settings.expiry_sweep_interval_hours,
        discovery_hours=settings.scheduled_discovery_interval_hours,
    )
    return scheduler


def start_scheduler(
    queue: QueueService,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[Settings] = None,
) -> None:
    setup_scheduler(queue, session_factory, settings)
    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    import asyncio

    from job_discovery.db.session import async_session_factory
    from job_discovery.workers.tasks import build_pipeline, create_broker

    async def main():
        # Without Redis the discover units run in this process
        queue, registry = build_pipeline(async_session_factory, create_broker())
        await registry.initialize(create_missing=True)
        start_scheduler(queue, async_session_factory)

        try:
            while True:
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            pass
        finally:
            stop_scheduler()
            await queue.wait_until_idle()
            await registry.close()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Scheduler shutdown by keyboard interrupt")
