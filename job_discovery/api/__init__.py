"""API routes module."""

from fastapi import APIRouter

from job_discovery.api import campaigns, jobs, queue, sources

router = APIRouter()

router.include_router(sources.router, prefix="/sources", tags=["sources"])
router.include_router(campaigns.router, prefix="/campaigns", tags=["campaigns"])
router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
router.include_router(queue.router, prefix="/queue", tags=["queue"])
