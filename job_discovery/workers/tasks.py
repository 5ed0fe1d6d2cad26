"""Queue and broker wiring shared by the API, worker and scheduler processes."""

from typing import Optional

import dramatiq
import structlog
from dramatiq import Broker
from dramatiq.brokers.redis import RedisBroker
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from job_discovery.config import Settings, get_settings
from job_discovery.db.models import Campaign
from job_discovery.engines.pipeline.lifecycle import MatchScorer, register_pipeline_handlers
from job_discovery.engines.sources import AdapterRegistry, build_registry
from job_discovery.queue.service import QueueService, WorkUnit, WorkUnitType

logger = structlog.get_logger()


def create_broker(redis_url: Optional[str] = None) -> Optional[Broker]:
    """Redis broker when a URL is configured, otherwise None (in-process queue)."""
    if redis_url is None:
        redis_url = get_settings().redis_url
    if not redis_url:
        return None

    broker = RedisBroker(url=str(redis_url))
    dramatiq.set_broker(broker)
    return broker


def build_pipeline(
    session_factory: async_sessionmaker[AsyncSession],
    broker: Optional[Broker] = None,
    settings: Optional[Settings] = None,
    scorer: Optional[MatchScorer] = None,
    registry: Optional[AdapterRegistry] = None,
) -> tuple[QueueService, AdapterRegistry]:
    """Registry, queue and stage handlers for one process."""
    settings = settings or get_settings()
    registry = registry or build_registry(session_factory, settings)

    queue = QueueService(
        session_factory,
        broker=broker,
        concurrency=settings.queue_concurrency,
        max_retries=settings.queue_max_retries,
        min_backoff_ms=settings.queue_min_backoff_ms,
        queue_name=settings.queue_name,
    )
    register_pipeline_handlers(queue, registry, session_factory, scorer)

    logger.info("Pipeline ready", mode=queue.mode, adapters=len(registry.get_all_adapters()))
    return queue, registry


async def enqueue_discovery(
    queue: QueueService,
    campaign_id: str,
    owner_id: Optional[str] = None,
    test_mode: bool = False,
) -> WorkUnit:
    return await queue.add_job(
        WorkUnit(
            type=WorkUnitType.DISCOVER,
            data={"campaign_id": str(campaign_id)},
            owner_id=owner_id,
            test_mode=test_mode,
        )
    )


async def enqueue_scheduled_discovery(
    queue: QueueService,
    session_factory: async_sessionmaker[AsyncSession],
) -> int:
    """Queue a discover unit for every active campaign."""
    async with session_factory() as db:
        result = await db.execute(select(Campaign).where(Campaign.is_active == True))
        campaigns = result.scalars().all()

    for campaign in campaigns:
        await enqueue_discovery(queue, str(campaign.id), owner_id=campaign.owner_id)

    logger.info("Scheduled discovery queued", campaigns=len(campaigns))
    return len(campaigns)
