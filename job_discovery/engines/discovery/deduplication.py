"""Job deduplication across sources and discovery runs.

A discovered job is a duplicate when it matches a persisted offer of the
same campaign by, in priority order:

1. external id (a re-poll of the same posting),
2. normalized URL (tracking parameters dropped),
3. fuzzy key, ``company|title|location`` with punctuation and case removed.

Jobs that survive all three are then checked against the ones already
accepted from the same batch, so a posting returned by two sources in one
run is kept once.
"""

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from urllib.parse import parse_qs, urlencode, urlsplit
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from job_discovery.db.models import OPEN_STATUSES, JobOffer, JobOfferStatus
from job_discovery.engines.sources.base import DiscoveredJob

logger = structlog.get_logger()

# Query parameters that identify a posting; everything else is tracking noise
ESSENTIAL_PARAMS = ("id", "job", "slug")

DEFAULT_MAX_AGE_DAYS = 30


class DuplicateMatchType(str, enum.Enum):
    EXTERNAL_ID = "external_id"
    URL = "url"
    FUZZY = "fuzzy"


@dataclass
class DuplicateMatch:
    job: DiscoveredJob
    existing_job_id: UUID
    match_type: DuplicateMatchType


@dataclass
class DeduplicationStats:
    total: int = 0
    unique: int = 0
    duplicates: int = 0
    batch_duplicates: int = 0
    by_match_type: dict[str, int] = field(default_factory=dict)

    def count(self, match_type: DuplicateMatchType) -> None:
        self.by_match_type[match_type.value] = self.by_match_type.get(match_type.value, 0) + 1


@dataclass
class DeduplicationResult:
    unique_jobs: list[DiscoveredJob]
    duplicates: list[DuplicateMatch]
    stats: DeduplicationStats


def normalize_text(text: Optional[str]) -> str:
    text = (text or "").lower()
    text = re.sub(r"[^a-z0-9\s]", "", text)
    return re.sub(r"\s+", " ", text).strip()


def normalize_url(url: str) -> str:
    """Canonical form of a posting URL.

    Lower-cases scheme, host and path, drops ``www.``, trailing slashes and
    every query parameter except id, job and slug (re-emitted in that
    order). Unparseable URLs are just lower-cased.
    """
    try:
        parts = urlsplit(url)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return url.lower()

    if not parts.scheme or not host:
        return url.lower()

    netloc = f"{host}:{port}" if port else host
    normalized = f"{parts.scheme}://{netloc}{parts.path}".rstrip("/")
    normalized = normalized.replace("://www.", "://", 1).lower()

    params = parse_qs(parts.query, keep_blank_values=True)
    kept = [(key, params[key][0]) for key in ESSENTIAL_PARAMS if key in params]
    if kept:
        normalized += "?" + urlencode(kept)

    return normalized


def create_fuzzy_key(company: str, title: str, location: Optional[str]) -> str:
    return f"{normalize_text(company)}|{normalize_text(title)}|{normalize_text(location)}"


def is_expired(job: DiscoveredJob, max_age_days: int = DEFAULT_MAX_AGE_DAYS) -> bool:
    """A posting without a date is never considered expired."""
    if job.posted_at is None:
        return False
    posted_at = job.posted_at
    if posted_at.tzinfo is None:
        posted_at = posted_at.replace(tzinfo=timezone.utc)
    age = datetime.now(timezone.utc) - posted_at
    return age > timedelta(days=max_age_days)


def _as_uuid(value: Union[str, UUID]) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


class JobDeduplicationService:
    """Partitions discovered jobs into new and already-known postings for a campaign."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def deduplicate(
        self,
        campaign_id: Union[str, UUID],
        jobs: list[DiscoveredJob],
    ) -> DeduplicationResult:
        result = await self.db.execute(
            select(
                JobOffer.id,
                JobOffer.external_id,
                JobOffer.url,
                JobOffer.company,
                JobOffer.title,
                JobOffer.location,
            ).where(JobOffer.campaign_id == _as_uuid(campaign_id))
        )

        by_external_id: dict[str, UUID] = {}
        by_url: dict[str, UUID] = {}
        by_fuzzy_key: dict[str, UUID] = {}
        for row in result.all():
            by_external_id.setdefault(row.external_id, row.id)
            by_url.setdefault(normalize_url(row.url), row.id)
            by_fuzzy_key.setdefault(create_fuzzy_key(row.company, row.title, row.location), row.id)

        batch_external_ids: set[str] = set()
        batch_urls: set[str] = set()
        batch_fuzzy_keys: set[str] = set()

        unique_jobs: list[DiscoveredJob] = []
        duplicates: list[DuplicateMatch] = []
        stats = DeduplicationStats(total=len(jobs))

        for job in jobs:
            url = normalize_url(job.url)
            fuzzy_key = create_fuzzy_key(job.company, job.title, job.location)

            match: Optional[DuplicateMatch] = None
            if job.external_id in by_external_id:
                match = DuplicateMatch(job, by_external_id[job.external_id], DuplicateMatchType.EXTERNAL_ID)
            elif url in by_url:
                match = DuplicateMatch(job, by_url[url], DuplicateMatchType.URL)
            elif fuzzy_key in by_fuzzy_key:
                match = DuplicateMatch(job, by_fuzzy_key[fuzzy_key], DuplicateMatchType.FUZZY)

            if match:
                duplicates.append(match)
                stats.count(match.match_type)
                continue

            # Same posting already accepted from this batch; first occurrence wins
            batch_match: Optional[DuplicateMatchType] = None
            if job.external_id in batch_external_ids:
                batch_match = DuplicateMatchType.EXTERNAL_ID
            elif url in batch_urls:
                batch_match = DuplicateMatchType.URL
            elif fuzzy_key in batch_fuzzy_keys:
                batch_match = DuplicateMatchType.FUZZY

            if batch_match:
                stats.batch_duplicates += 1
                stats.count(batch_match)
                continue

            unique_jobs.append(job)
            batch_external_ids.add(job.external_id)
            batch_urls.add(url)
            batch_fuzzy_keys.add(fuzzy_key)

        stats.unique = len(unique_jobs)
        stats.duplicates = len(duplicates) + stats.batch_duplicates

        if stats.duplicates:
            logger.info(
                "Deduplicated jobs",
                campaign_id=str(campaign_id),
                total=stats.total,
                unique=stats.unique,
                duplicates=stats.duplicates,
                by_match_type=stats.by_match_type,
            )

        return DeduplicationResult(unique_jobs=unique_jobs, duplicates=duplicates, stats=stats)

    async def mark_expired_jobs(
        self,
        campaign_id: Union[str, UUID],
        max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    ) -> int:
        """Sweep open offers discovered before the cutoff into EXPIRED."""
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(days=max_age_days)

        result = await self.db.execute(
            update(JobOffer)
            .where(
                JobOffer.campaign_id == _as_uuid(campaign_id),
                JobOffer.discovered_at < cutoff,
                JobOffer.status.in_([s.value for s in OPEN_STATUSES]),
                JobOffer.expires_at.is_(None),
            )
            .values(status=JobOfferStatus.EXPIRED.value, expires_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        count = result.rowcount or 0
        if count:
            logger.info("Marked jobs as expired", campaign_id=str(campaign_id), count=count)
        return count

    async def get_duplicate_stats(self, campaign_id: Union[str, UUID]) -> dict[str, int]:
        result = await self.db.execute(
            select(JobOffer.url, JobOffer.company, JobOffer.title, JobOffer.location).where(
                JobOffer.campaign_id == _as_uuid(campaign_id)
            )
        )
        rows = result.all()

        urls = {normalize_url(r.url) for r in rows}
        fuzzy_keys = {create_fuzzy_key(r.company, r.title, r.location) for r in rows}

        return {
            "total_jobs": len(rows),
            "unique_urls": len(urls),
            "potential_duplicates": len(rows) - max(len(urls), len(fuzzy_keys)),
        }
