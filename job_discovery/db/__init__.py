"""Database module."""

from job_discovery.db.session import (
    async_session_factory,
    create_engine_for,
    create_session_factory,
    engine,
    get_db,
)
from job_discovery.db.models import (
    OPEN_STATUSES,
    Application,
    ApplicationStatus,
    BackgroundJob,
    Base,
    Campaign,
    CampaignSource,
    DiscoveryRun,
    JobOffer,
    JobOfferStatus,
    JobSource,
    JobSourceType,
)

__all__ = [
    "get_db",
    "engine",
    "async_session_factory",
    "create_engine_for",
    "create_session_factory",
    "Base",
    "Campaign",
    "CampaignSource",
    "JobSource",
    "JobSourceType",
    "JobOffer",
    "JobOfferStatus",
    "OPEN_STATUSES",
    "Application",
    "ApplicationStatus",
    "BackgroundJob",
    "DiscoveryRun",
]
