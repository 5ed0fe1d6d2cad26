"""RemoteOK job source.

RemoteOK publishes every recent posting through a public JSON API, so
filtering happens locally. The RSS feed is used when the API is down.
"""

import time
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from job_discovery.config import get_settings
from job_discovery.db.models import JobSourceType
from job_discovery.engines.sources.base import (
    SOURCE_ERRORS,
    CampaignSearchCriteria,
    ContractType,
    DiscoveredJob,
    DiscoveryResult,
    HealthCheckResult,
    HttpSourceAdapter,
    RemoteType,
)
from job_discovery.engines.sources.feed_parser import FeedItem, parse_feed
from job_discovery.engines.sources.matching import (
    extract_requirements,
    format_salary,
    matches_role,
    merge_requirements,
    stable_hash,
    strip_html,
)

logger = structlog.get_logger()


class RemoteOKAdapter(HttpSourceAdapter):
    source_name = "remoteok"
    display_name = "RemoteOK"
    source_type = JobSourceType.RSS
    supports_auto_apply = False
    rate_limit_preset = "remoteok"

    def __init__(
        self,
        api_url: Optional[str] = None,
        rss_url: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        settings = get_settings()
        self.api_url = api_url or settings.remoteok_api_url
        self.rss_url = rss_url or settings.remoteok_rss_url

    async def discover_jobs(self, criteria: CampaignSearchCriteria) -> DiscoveryResult:
        started = time.monotonic()
        errors: list[str] = []
        jobs: list[DiscoveredJob] = []
        total_found = 0

        try:
            postings = await self._fetch_api()
        except SOURCE_ERRORS as e:
            logger.warning("RemoteOK API failed, falling back to RSS", error=str(e))
            errors.append(str(e))

            try:
                items = await self._fetch_rss()
            except SOURCE_ERRORS as rss_error:
                logger.warning("RemoteOK RSS fallback failed", error=str(rss_error))
                errors.append(f"RSS fallback also failed: {rss_error}")
                return self._result(jobs, started, errors=errors, total_found=total_found)

            total_found = len(items)
            for item in items:
                try:
                    if self._matches_item(item, criteria):
                        jobs.append(self._map_feed_item(item))
                except SOURCE_ERRORS as item_error:
                    errors.append(f"Unreadable feed item {item.link}: {item_error}")
            return self._result(jobs, started, errors=errors, total_found=total_found)

        total_found = len(postings)
        for posting in postings:
            # One bad posting must not cost the rest of the batch
            try:
                if self._matches_posting(posting, criteria):
                    jobs.append(self._map_posting(posting))
            except SOURCE_ERRORS as e:
                errors.append(f"Unreadable posting {posting.get('id')}: {e}")

        logger.info(
            "RemoteOK jobs fetched",
            campaign_id=criteria.campaign_id,
            found=total_found,
            matched=len(jobs),
        )
        return self._result(jobs, started, errors=errors, total_found=total_found)

    async def health_check(self) -> HealthCheckResult:
        return await self._probe("HEAD", self.api_url, "RemoteOK API available")

    async def _fetch_api(self) -> list[dict[str, Any]]:
        response = await self._request("GET", self.api_url)
        data = response.json()
        if not isinstance(data, list):
            raise ValueError("Invalid RemoteOK API response format")

        # First element is the legal notice, postings follow
        return [item for item in data[1:] if isinstance(item, dict) and "position" in item]

    async def _fetch_rss(self) -> list[FeedItem]:
        response = await self._request(
            "GET",
            self.rss_url,
            headers={"Accept": "application/rss+xml, application/xml, text/xml, */*"},
        )
        return parse_feed(response.text).items

    def _matches_posting(self, posting: dict[str, Any], criteria: CampaignSearchCriteria) -> bool:
        if criteria.target_roles and not matches_role(
            posting.get("position", ""), criteria.target_roles
        ):
            return False

        # Everything on RemoteOK is remote. Without remote tolerance, keep only
        # postings whose location names one of the targets.
        location = (posting.get("location") or "").lower()
        if not criteria.remote_ok:
            location_match = any(loc.lower() in location for loc in criteria.target_locations)
            if not location_match and "worldwide" in location:
                return False

        salary_max = posting.get("salary_max")
        if criteria.salary_min and salary_max and salary_max < criteria.salary_min:
            return False

        return True

    def _matches_item(self, item: FeedItem, criteria: CampaignSearchCriteria) -> bool:
        if not criteria.target_roles:
            return True
        if matches_role(item.title, criteria.target_roles):
            return True
        description = (item.description or "").lower()
        categories = [c.lower() for c in item.categories]
        for role in criteria.target_roles:
            role = role.lower()
            if role in description or any(role in c for c in categories):
                return True
        return False

    def _map_posting(self, posting: dict[str, Any]) -> DiscoveredJob:
        description = strip_html(posting.get("description"))
        epoch = posting.get("epoch")
        slug = posting.get("slug") or posting.get("id")

        return DiscoveredJob(
            external_id=f"remoteok-{posting['id']}",
            title=posting["position"],
            company=posting.get("company") or "Unknown",
            location=posting.get("location") or "Remote",
            description=description,
            requirements=merge_requirements(
                extract_requirements(description), posting.get("tags") or []
            ),
            salary=format_salary(
                posting.get("salary_min"), posting.get("salary_max"), "USD", symbol="$"
            ),
            contract_type=ContractType.FULL_TIME.value,
            remote_type=RemoteType.REMOTE.value,
            url=posting.get("url") or f"https://remoteok.com/remote-jobs/{slug}",
            posted_at=datetime.fromtimestamp(epoch, tz=timezone.utc) if epoch else None,
            application_url=posting.get("apply_url"),
        )

    def _map_feed_item(self, item: FeedItem) -> DiscoveredJob:
        description = strip_html(item.description or item.content)

        # Feed titles read "Company: Position"
        company, title = "Unknown", item.title
        company_part, sep, position = item.title.partition(":")
        if sep and company_part.strip():
            company, title = company_part.strip(), position.strip()

        return DiscoveredJob(
            external_id=f"remoteok-{item.guid or stable_hash(item.link)}",
            title=title,
            company=company,
            location="Remote",
            description=description,
            requirements=merge_requirements(extract_requirements(description), item.categories),
            contract_type=ContractType.FULL_TIME.value,
            remote_type=RemoteType.REMOTE.value,
            url=item.link,
            posted_at=item.published,
        )
