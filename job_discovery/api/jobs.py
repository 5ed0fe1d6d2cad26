"""Job offer endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from job_discovery.db import get_db
from job_discovery.engines.pipeline.lifecycle import (
    InvalidTransitionError,
    JobOfferNotFoundError,
    reject_job_offer,
)

router = APIRouter()


class JobOfferResponse(BaseModel):
    """Job offer response model."""

    id: UUID
    campaign_id: UUID
    job_source_id: Optional[UUID] = None
    external_id: str
    title: str
    company: str
    location: Optional[str] = None
    description: str = ""
    requirements: list[str] = []
    salary: Optional[str] = None
    contract_type: Optional[str] = None
    remote_type: Optional[str] = None
    url: str
    application_email: Optional[str] = None
    application_url: Optional[str] = None
    posted_at: Optional[datetime] = None
    status: str
    discovered_at: datetime
    expires_at: Optional[datetime] = None
    match_score: Optional[float] = None

    class Config:
        from_attributes = True


@router.post("/{job_offer_id}/reject", response_model=JobOfferResponse)
async def reject_job(job_offer_id: UUID, db: AsyncSession = Depends(get_db)):
    """Reject a job offer on the user's behalf."""
    try:
        offer = await reject_job_offer(db, job_offer_id)
    except JobOfferNotFoundError:
        raise HTTPException(status_code=404, detail="Job offer not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return JobOfferResponse.model_validate(offer)
