"""Base class and models for job source adapters."""

import enum
import time
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import httpx

from job_discovery.db.models import JobSourceType
from job_discovery.engines.http_client import ManagedHttpClient
from job_discovery.engines.sources.rate_limiter import (
    RATE_LIMIT_CONFIGS,
    RETRY_CONFIGS,
    RateLimiter,
    RetryConfig,
    SourceHTTPError,
    raise_for_status,
    with_retry,
)

# Failures an adapter reports in metadata.errors instead of raising
SOURCE_ERRORS = (
    httpx.HTTPError,
    SourceHTTPError,
    ValueError,
    KeyError,
    TypeError,
    ET.ParseError,
)


class RemoteType(str, enum.Enum):
    REMOTE = "Remote"
    HYBRID = "Hybrid"
    ON_SITE = "On-site"
    UNKNOWN = "Unknown"


class ContractType(str, enum.Enum):
    FULL_TIME = "Full-time"
    PART_TIME = "Part-time"
    CONTRACT = "Contract"
    FREELANCE = "Freelance"
    INTERNSHIP = "Internship"


MAX_REQUIREMENTS = 15


@dataclass
class CampaignSearchCriteria:
    """Search criteria derived from a campaign. Never persisted."""

    campaign_id: str
    target_roles: list[str] = field(default_factory=list)
    target_locations: list[str] = field(default_factory=list)
    contract_types: list[str] = field(default_factory=list)
    remote_ok: bool = True
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    salary_currency: Optional[str] = None

    @classmethod
    def from_campaign(cls, campaign) -> "CampaignSearchCriteria":
        return cls(
            campaign_id=str(campaign.id),
            target_roles=list(campaign.target_roles or []),
            target_locations=list(campaign.target_locations or []),
            contract_types=list(campaign.contract_types or []),
            remote_ok=bool(campaign.remote_ok),
            salary_min=campaign.salary_min,
            salary_max=campaign.salary_max,
            salary_currency=campaign.salary_currency,
        )


@dataclass
class DiscoveredJob:
    """A job posting mapped from a source's native format."""

    external_id: str  # stable across re-polls of the same posting
    title: str
    company: str
    url: str
    description: str = ""
    location: Optional[str] = None
    requirements: list[str] = field(default_factory=list)
    salary: Optional[str] = None
    contract_type: Optional[str] = None
    remote_type: Optional[str] = None
    posted_at: Optional[datetime] = None
    application_email: Optional[str] = None
    application_url: Optional[str] = None

    # Stamped by the registry with the adapter that produced the job
    source_name: Optional[str] = None

    def __post_init__(self):
        if len(self.requirements) > MAX_REQUIREMENTS:
            self.requirements = self.requirements[:MAX_REQUIREMENTS]


@dataclass
class DiscoveryMetadata:
    source: str
    query_time_ms: int = 0
    total_found: int = 0
    filtered: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class DiscoveryResult:
    jobs: list[DiscoveredJob]
    metadata: DiscoveryMetadata


@dataclass
class HealthCheckResult:
    healthy: bool
    message: str
    response_time_ms: int = 0
    last_checked: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def elapsed_ms(started: float) -> int:
    """Milliseconds since a time.monotonic() reading."""
    return int((time.monotonic() - started) * 1000)


class JobSourceAdapter(ABC):
    """Abstract base class for job sources.

    Adapters query exactly one external source and map its postings into
    DiscoveredJob. Ordinary HTTP failures are reported in
    metadata.errors instead of being raised.
    """

    source_name: str = ""
    display_name: str = ""
    source_type: JobSourceType = JobSourceType.API
    supports_auto_apply: bool = False

    def __init__(self):
        self._source_id: Optional[UUID] = None

    def get_source_id(self) -> Optional[UUID]:
        return self._source_id

    def set_source_id(self, source_id: UUID) -> None:
        self._source_id = source_id

    @abstractmethod
    async def discover_jobs(self, criteria: CampaignSearchCriteria) -> DiscoveryResult:
        """Query the source and return postings matching the criteria."""
        pass

    @abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """Cheap liveness probe. Must not mutate state."""
        pass

    async def close(self) -> None:
        """Release network resources held by the adapter."""
        pass

    def _result(
        self,
        jobs: list[DiscoveredJob],
        started: float,
        errors: Optional[list[str]] = None,
        total_found: Optional[int] = None,
    ) -> DiscoveryResult:
        found = len(jobs) if total_found is None else total_found
        return DiscoveryResult(
            jobs=jobs,
            metadata=DiscoveryMetadata(
                source=self.source_name,
                query_time_ms=elapsed_ms(started),
                total_found=found,
                filtered=max(0, found - len(jobs)),
                errors=errors or [],
            ),
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class HttpSourceAdapter(JobSourceAdapter):
    """Adapter that talks to a remote endpoint.

    Every outbound call goes through the source's rate limit bucket and
    its retry policy, and non-2xx responses raise SourceHTTPError.
    """

    rate_limit_preset: str = "default"
    retry_preset: str = "standard"
    json_accept: bool = True

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_config: Optional[RetryConfig] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__()
        self.rate_limiter = rate_limiter or RateLimiter(RATE_LIMIT_CONFIGS[self.rate_limit_preset])
        self.retry_config = retry_config or RETRY_CONFIGS[self.retry_preset]
        self._http = ManagedHttpClient(
            json_accept=self.json_accept,
            headers=headers,
            transport=transport,
        )

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Rate-limited, retried request. Raises on non-2xx."""
        client = await self._http.get_client()

        async def attempt() -> httpx.Response:
            response = await client.request(method, url, **kwargs)
            raise_for_status(response, self.display_name or self.source_name)
            return response

        return await self.rate_limiter.execute(
            self.source_name,
            lambda: with_retry(attempt, self.retry_config, source=self.source_name),
        )

    async def _probe(self, method: str, url: str, ok_message: str, **kwargs) -> HealthCheckResult:
        """Single un-retried request used as a health check."""
        started = time.monotonic()
        try:
            client = await self._http.get_client()
            response = await client.request(method, url, **kwargs)
            return HealthCheckResult(
                healthy=response.is_success,
                message=ok_message if response.is_success else f"HTTP {response.status_code}",
                response_time_ms=elapsed_ms(started),
            )
        except httpx.HTTPError as e:
            return HealthCheckResult(
                healthy=False,
                message=str(e) or "Health check failed",
                response_time_ms=elapsed_ms(started),
            )

    async def close(self) -> None:
        await self._http.close()
