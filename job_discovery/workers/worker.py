"""Dramatiq worker entrypoint.

    dramatiq job_discovery.workers.worker --threads 5

Importing this module declares the work_unit actor on the Redis broker.
"""

import structlog

from job_discovery.config import get_settings
from job_discovery.db.session import async_session_factory
from job_discovery.workers.tasks import build_pipeline, create_broker

settings = get_settings()
logger = structlog.get_logger()

broker = create_broker(settings.redis_url)
if broker is None:
    raise RuntimeError("REDIS_URL must be set to run a queue worker")

queue, registry = build_pipeline(async_session_factory, broker, settings)
logger.info("Queue worker module loaded", queue=settings.queue_name)
