"""Discovery runs and job deduplication."""

from job_discovery.engines.discovery.deduplication import (
    DeduplicationResult,
    DeduplicationStats,
    DuplicateMatch,
    DuplicateMatchType,
    JobDeduplicationService,
    create_fuzzy_key,
    is_expired,
    normalize_text,
    normalize_url,
)
from job_discovery.engines.discovery.orchestrator import (
    CampaignNotFoundError,
    DiscoverySummary,
    JobDiscoveryService,
)

__all__ = [
    "CampaignNotFoundError",
    "DeduplicationResult",
    "DeduplicationStats",
    "DiscoverySummary",
    "DuplicateMatch",
    "DuplicateMatchType",
    "JobDeduplicationService",
    "JobDiscoveryService",
    "create_fuzzy_key",
    "is_expired",
    "normalize_text",
    "normalize_url",
]
