"""Job source adapters.

Each adapter queries one external job source and maps its postings into
DiscoveredJob. The registry fans discovery out across adapters.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from job_discovery.config import Settings, get_settings
from job_discovery.engines.sources.base import (
    CampaignSearchCriteria,
    ContractType,
    DiscoveredJob,
    DiscoveryMetadata,
    DiscoveryResult,
    HealthCheckResult,
    HttpSourceAdapter,
    JobSourceAdapter,
    RemoteType,
)
from job_discovery.engines.sources.jobspy import JobSpyAdapter
from job_discovery.engines.sources.mock import MockAdapter
from job_discovery.engines.sources.rate_limiter import (
    RATE_LIMIT_CONFIGS,
    RETRY_CONFIGS,
    RateLimitConfig,
    RateLimiter,
    RetryConfig,
    SourceHTTPError,
    with_retry,
)
from job_discovery.engines.sources.registry import (
    AdapterRegistry,
    AggregatedDiscoveryResult,
    SourceResult,
    SourceStatus,
    UnknownSourceError,
)
from job_discovery.engines.sources.remoteok import RemoteOKAdapter
from job_discovery.engines.sources.wttj import WTTJAdapter


def build_registry(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[Settings] = None,
) -> AdapterRegistry:
    """Registry with every built-in adapter. The mock source only outside production."""
    settings = settings or get_settings()
    registry = AdapterRegistry(session_factory)

    if settings.mock_jobs_enabled:
        registry.register_adapter(MockAdapter(enabled=True))
    registry.register_adapter(RemoteOKAdapter())
    registry.register_adapter(WTTJAdapter())
    registry.register_adapter(JobSpyAdapter())

    return registry


__all__ = [
    "AdapterRegistry",
    "AggregatedDiscoveryResult",
    "CampaignSearchCriteria",
    "ContractType",
    "DiscoveredJob",
    "DiscoveryMetadata",
    "DiscoveryResult",
    "HealthCheckResult",
    "HttpSourceAdapter",
    "JobSourceAdapter",
    "JobSpyAdapter",
    "MockAdapter",
    "RATE_LIMIT_CONFIGS",
    "RETRY_CONFIGS",
    "RateLimitConfig",
    "RateLimiter",
    "RemoteOKAdapter",
    "RemoteType",
    "RetryConfig",
    "SourceHTTPError",
    "SourceResult",
    "SourceStatus",
    "UnknownSourceError",
    "WTTJAdapter",
    "build_registry",
]
