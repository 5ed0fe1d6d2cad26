"""Job source health and catalog endpoints."""

from datetime import datetime, timezone
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from job_discovery.api.deps import get_registry
from job_discovery.engines.sources.registry import AdapterRegistry

router = APIRouter()


class SourceHealthResponse(BaseModel):
    name: str
    display_name: str
    type: str
    healthy: bool
    message: str
    response_time_ms: int
    last_checked: datetime


class HealthSummary(BaseModel):
    total: int
    healthy: int
    unhealthy: int


class SourcesHealthResponse(BaseModel):
    """Overall status: healthy when nothing fails, unhealthy when nothing passes."""

    status: Literal["healthy", "degraded", "unhealthy"]
    timestamp: datetime
    sources: list[SourceHealthResponse]
    summary: HealthSummary


class SourceResponse(BaseModel):
    name: str
    display_name: str
    type: str
    supports_auto_apply: bool
    source_id: Optional[UUID] = None


class SourceListResponse(BaseModel):
    sources: list[SourceResponse]


@router.get("/health", response_model=SourcesHealthResponse)
async def sources_health(registry: AdapterRegistry = Depends(get_registry)):
    """Run every adapter's health check in parallel."""
    statuses = await registry.source_statuses()

    healthy = sum(1 for s in statuses if s.healthy)
    unhealthy = len(statuses) - healthy

    if unhealthy == 0:
        status = "healthy"
    elif healthy > 0:
        status = "degraded"
    else:
        status = "unhealthy"

    return SourcesHealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc),
        sources=[
            SourceHealthResponse(
                name=s.name,
                display_name=s.display_name,
                type=s.type,
                healthy=s.healthy,
                message=s.message,
                response_time_ms=s.response_time_ms,
                last_checked=s.last_checked,
            )
            for s in statuses
        ],
        summary=HealthSummary(total=len(statuses), healthy=healthy, unhealthy=unhealthy),
    )


@router.get("", response_model=SourceListResponse)
async def list_sources(registry: AdapterRegistry = Depends(get_registry)):
    return SourceListResponse(
        sources=[
            SourceResponse(
                name=adapter.source_name,
                display_name=adapter.display_name,
                type=adapter.source_type.value,
                supports_auto_apply=adapter.supports_auto_apply,
                source_id=adapter.get_source_id(),
            )
            for adapter in registry.get_all_adapters()
        ]
    )
