import os

# Settings are cached on first use, so the environment goes in before any import
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["REDIS_URL"] = ""
os.environ["SENTRY_DSN"] = ""

import pytest

from job_discovery.db.models import Base, Campaign
from job_discovery.db.session import create_engine_for, create_session_factory
from job_discovery.engines.sources.registry import AdapterRegistry
from job_discovery.queue.service import QueueService


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", null_pool=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def campaign(db):
    campaign = Campaign(
        name="Backend search",
        owner_id="user-1",
        target_roles=["Backend Engineer"],
        target_locations=["Remote"],
        contract_types=["Full-time"],
        remote_ok=True,
        match_threshold=60.0,
        auto_apply=False,
        is_active=True,
    )
    db.add(campaign)
    await db.commit()
    return campaign


@pytest.fixture
async def queue(session_factory):
    queue = QueueService(session_factory)
    yield queue
    await queue.wait_until_idle()


@pytest.fixture
async def registry(session_factory):
    registry = AdapterRegistry(session_factory)
    yield registry
    await registry.close()
