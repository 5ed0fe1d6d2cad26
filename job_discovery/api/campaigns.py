"""Campaign discovery endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from job_discovery.api.deps import get_queue
from job_discovery.api.jobs import JobOfferResponse
from job_discovery.config import get_settings
from job_discovery.db import Campaign, DiscoveryRun, JobOffer, JobOfferStatus, get_db
from job_discovery.engines.discovery.deduplication import JobDeduplicationService
from job_discovery.queue.service import QueueService
from job_discovery.workers.tasks import enqueue_discovery

router = APIRouter()


class DiscoverQueuedResponse(BaseModel):
    campaign_id: UUID
    log_id: UUID
    mode: str


class JobOfferListResponse(BaseModel):
    """Paginated job offer list response."""

    jobs: list[JobOfferResponse]
    total: int
    page: int
    page_size: int
    has_more: bool


class ExpireResponse(BaseModel):
    campaign_id: UUID
    expired: int


class DiscoveryRunResponse(BaseModel):
    id: UUID
    status: str
    test_mode: bool
    jobs_found: int
    new_jobs: int
    duplicates: int
    expired: int
    duplicates_by_type: Optional[dict] = None
    source_results: Optional[list] = None
    query_time_ms: int
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DuplicateStatsResponse(BaseModel):
    total_jobs: int
    unique_urls: int
    potential_duplicates: int


async def _get_campaign(db: AsyncSession, campaign_id: UUID) -> Campaign:
    campaign = await db.get(Campaign, campaign_id)
    if not campaign:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return campaign


@router.post("/{campaign_id}/discover", response_model=DiscoverQueuedResponse, status_code=202)
async def trigger_discovery(
    campaign_id: UUID,
    test_mode: bool = False,
    db: AsyncSession = Depends(get_db),
    queue: QueueService = Depends(get_queue),
):
    """Queue a discovery run for a campaign."""
    campaign = await _get_campaign(db, campaign_id)
    unit = await enqueue_discovery(queue, str(campaign.id), owner_id=campaign.owner_id, test_mode=test_mode)
    return DiscoverQueuedResponse(campaign_id=campaign.id, log_id=unit.log_id, mode=queue.mode)


@router.get("/{campaign_id}/jobs", response_model=JobOfferListResponse)
async def list_campaign_jobs(
    campaign_id: UUID,
    status: Optional[JobOfferStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List a campaign's job offers, newest first."""
    await _get_campaign(db, campaign_id)

    filters = [JobOffer.campaign_id == campaign_id]
    if status:
        filters.append(JobOffer.status == status.value)

    total = await db.scalar(select(func.count(JobOffer.id)).where(*filters))

    result = await db.execute(
        select(JobOffer)
        .where(*filters)
        .order_by(JobOffer.discovered_at.desc(), JobOffer.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    offers = result.scalars().all()

    return JobOfferListResponse(
        jobs=[JobOfferResponse.model_validate(o) for o in offers],
        total=total or 0,
        page=page,
        page_size=page_size,
        has_more=page * page_size < (total or 0),
    )


@router.post("/{campaign_id}/expire", response_model=ExpireResponse)
async def expire_campaign_jobs(
    campaign_id: UUID,
    max_age_days: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
):
    """Expire the campaign's open offers older than max_age_days."""
    await _get_campaign(db, campaign_id)
    expired = await JobDeduplicationService(db).mark_expired_jobs(
        campaign_id, max_age_days or get_settings().job_max_age_days
    )
    return ExpireResponse(campaign_id=campaign_id, expired=expired)


@router.get("/{campaign_id}/runs", response_model=list[DiscoveryRunResponse])
async def list_discovery_runs(
    campaign_id: UUID,
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    await _get_campaign(db, campaign_id)
    result = await db.execute(
        select(DiscoveryRun)
        .where(DiscoveryRun.campaign_id == campaign_id)
        .order_by(DiscoveryRun.started_at.desc())
        .limit(limit)
    )
    return [DiscoveryRunResponse.model_validate(r) for r in result.scalars().all()]


@router.get("/{campaign_id}/duplicates", response_model=DuplicateStatsResponse)
async def campaign_duplicate_stats(campaign_id: UUID, db: AsyncSession = Depends(get_db)):
    await _get_campaign(db, campaign_id)
    stats = await JobDeduplicationService(db).get_duplicate_stats(campaign_id)
    return DuplicateStatsResponse(**stats)
