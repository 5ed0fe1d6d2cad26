"""SQLAlchemy database models."""

import enum
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class JobOfferStatus(str, enum.Enum):
    DISCOVERED = "DISCOVERED"
    ANALYZING = "ANALYZING"
    MATCHED = "MATCHED"
    REJECTED = "REJECTED"
    APPLIED = "APPLIED"
    EXPIRED = "EXPIRED"
    ERROR = "ERROR"


# Offers in these statuses are still moving through the pipeline
OPEN_STATUSES = (
    JobOfferStatus.DISCOVERED,
    JobOfferStatus.ANALYZING,
    JobOfferStatus.MATCHED,
)


class JobSourceType(str, enum.Enum):
    API = "API"
    SCRAPER = "SCRAPER"
    RSS = "RSS"
    MANUAL = "MANUAL"
    MOCK = "MOCK"


class ApplicationStatus(str, enum.Enum):
    PENDING_GENERATION = "PENDING_GENERATION"
    GENERATING = "GENERATING"
    PENDING_REVIEW = "PENDING_REVIEW"
    SUBMITTED = "SUBMITTED"
    FAILED = "FAILED"


class Campaign(Base):
    """A user's job search configuration."""

    __tablename__ = "campaigns"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Search criteria
    target_roles: Mapped[list] = mapped_column(JSONType, default=list)
    target_locations: Mapped[list] = mapped_column(JSONType, default=list)
    contract_types: Mapped[list] = mapped_column(JSONType, default=list)
    remote_ok: Mapped[bool] = mapped_column(Boolean, default=True)
    salary_min: Mapped[Optional[int]] = mapped_column(Integer)
    salary_max: Mapped[Optional[int]] = mapped_column(Integer)
    salary_currency: Mapped[Optional[str]] = mapped_column(String(8))

    # Pipeline behaviour
    match_threshold: Mapped[float] = mapped_column(Float, default=60.0)  # 0-100
    auto_apply: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    job_sources: Mapped[list["CampaignSource"]] = relationship(
        back_populates="campaign", lazy="selectin"
    )
    job_offers: Mapped[list["JobOffer"]] = relationship(back_populates="campaign")


class JobSource(Base):
    """Catalog entry for an external job source, joined to adapters by name."""

    __tablename__ = "job_sources"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # JobSourceType
    supports_auto_apply: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class CampaignSource(Base):
    """Sources explicitly configured for a campaign."""

    __tablename__ = "campaign_sources"

    campaign_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), primary_key=True
    )
    source_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("job_sources.id", ondelete="CASCADE"), primary_key=True
    )

    campaign: Mapped["Campaign"] = relationship(back_populates="job_sources")
    source: Mapped["JobSource"] = relationship(lazy="selectin")


class JobOffer(Base):
    """A job posting discovered for one campaign."""

    __tablename__ = "job_offers"
    __table_args__ = (
        # One row per posting per campaign, even across overlapping runs
        UniqueConstraint("campaign_id", "external_id", name="uq_job_offers_campaign_external_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    campaign_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), index=True
    )
    job_source_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("job_sources.id", ondelete="SET NULL")
    )

    # Posting
    external_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    company: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, default="")
    requirements: Mapped[list] = mapped_column(JSONType, default=list)
    salary: Mapped[Optional[str]] = mapped_column(String(255))
    contract_type: Mapped[Optional[str]] = mapped_column(String(50))
    remote_type: Mapped[Optional[str]] = mapped_column(String(20))  # Remote, Hybrid, On-site, Unknown
    url: Mapped[str] = mapped_column(Text, nullable=False)
    application_email: Mapped[Optional[str]] = mapped_column(String(255))
    application_url: Mapped[Optional[str]] = mapped_column(Text)
    posted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), default=JobOfferStatus.DISCOVERED.value, index=True
    )
    discovered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Filled in by the analysis stage
    match_score: Mapped[Optional[float]] = mapped_column(Float)
    match_analysis: Mapped[Optional[dict]] = mapped_column(JSONType)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    campaign: Mapped["Campaign"] = relationship(back_populates="job_offers")
    job_source: Mapped[Optional["JobSource"]] = relationship()


class Application(Base):
    """Application created when a matched offer is auto-applied."""

    __tablename__ = "applications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    job_offer_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("job_offers.id", ondelete="CASCADE"), unique=True
    )
    campaign_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="CASCADE")
    )
    owner_id: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(
        String(30), default=ApplicationStatus.PENDING_GENERATION.value
    )
    requires_confirm: Mapped[bool] = mapped_column(Boolean, default=True)
    test_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class BackgroundJob(Base):
    """Durable log row written for every queued work unit."""

    __tablename__ = "background_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="pending", index=True
    )  # pending, running, completed, failed
    priority: Mapped[int] = mapped_column(Integer, default=0)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class DiscoveryRun(Base):
    """Track discovery runs for monitoring and debugging."""

    __tablename__ = "discovery_runs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    campaign_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default="running"
    )  # running, completed, failed
    test_mode: Mapped[bool] = mapped_column(Boolean, default=False)

    # Stats
    jobs_found: Mapped[int] = mapped_column(Integer, default=0)
    new_jobs: Mapped[int] = mapped_column(Integer, default=0)
    duplicates: Mapped[int] = mapped_column(Integer, default=0)
    expired: Mapped[int] = mapped_column(Integer, default=0)
    duplicates_by_type: Mapped[Optional[dict]] = mapped_column(JSONType)
    source_results: Mapped[Optional[list]] = mapped_column(JSONType)
    query_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)

    error_message: Mapped[Optional[str]] = mapped_column(Text)

    # Progress logs - list of log entries with timestamp, level, message
    # Each entry: {"ts": "2024-01-01T12:00:00Z", "level": "info", "msg": "...", "data": {...}}
    logs: Mapped[Optional[list]] = mapped_column(JSONType, default=list)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
