"""JobSpy aggregator source.

Talks to a self-hosted JobSpy REST API, which scrapes Indeed (and other
boards) on our behalf and returns normalized postings.
"""

import time
from typing import Any, Optional

import structlog

from job_discovery.config import get_settings
from job_discovery.db.models import JobSourceType
from job_discovery.engines.sources.base import (
    SOURCE_ERRORS,
    CampaignSearchCriteria,
    DiscoveredJob,
    DiscoveryResult,
    HealthCheckResult,
    HttpSourceAdapter,
    RemoteType,
)
from job_discovery.engines.sources.feed_parser import parse_date
from job_discovery.engines.sources.matching import (
    determine_remote_type,
    extract_requirements,
    format_salary,
    matches_location,
    normalize_contract_type,
    stable_hash,
)

logger = structlog.get_logger()

# Location fragment -> Indeed country; first hit wins
COUNTRY_MAPPINGS: dict[str, str] = {
    "united states": "USA",
    "usa": "USA",
    "new york": "USA",
    "san francisco": "USA",
    "los angeles": "USA",
    "united kingdom": "UK",
    "uk": "UK",
    "london": "UK",
    "france": "France",
    "paris": "France",
    "lyon": "France",
    "marseille": "France",
    "germany": "Germany",
    "berlin": "Germany",
    "munich": "Germany",
    "canada": "Canada",
    "toronto": "Canada",
    "vancouver": "Canada",
    "australia": "Australia",
    "sydney": "Australia",
    "melbourne": "Australia",
    "netherlands": "Netherlands",
    "amsterdam": "Netherlands",
    "spain": "Spain",
    "madrid": "Spain",
    "barcelona": "Spain",
    "italy": "Italy",
    "milan": "Italy",
    "rome": "Italy",
    "remote": "USA",
}

DEFAULT_COUNTRY = "USA"


def build_search_term(target_roles: list[str]) -> str:
    if not target_roles:
        return "developer"
    if len(target_roles) == 1:
        return target_roles[0]
    return " OR ".join(target_roles[:3])


def country_for_location(location: str) -> str:
    normalized = location.lower()
    for key, country in COUNTRY_MAPPINGS.items():
        if key in normalized:
            return country
    return DEFAULT_COUNTRY


def job_type_for_contract(contract_type: str) -> Optional[str]:
    """Map a campaign contract type onto JobSpy's job_type parameter."""
    normalized = contract_type.lower()
    if any(k in normalized for k in ("full", "cdi", "permanent")):
        return "fulltime"
    if "part" in normalized:
        return "parttime"
    if any(k in normalized for k in ("contract", "cdd", "temporary")):
        return "contract"
    if "intern" in normalized or "stage" in normalized:
        return "internship"
    return None


def meets_salary_floor(posting: dict[str, Any], salary_min: Optional[int]) -> bool:
    """Campaign floors are annual, so only yearly (or unlabelled) pay is compared."""
    max_amount = posting.get("max_amount")
    if not salary_min or not max_amount:
        return True
    if (posting.get("interval") or "yearly") != "yearly":
        return True
    return max_amount >= salary_min


class JobSpyAdapter(HttpSourceAdapter):
    source_name = "jobspy"
    display_name = "Indeed (JobSpy)"
    source_type = JobSourceType.API
    supports_auto_apply = False
    rate_limit_preset = "jobspy"

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        results_wanted: Optional[int] = None,
        **kwargs,
    ):
        settings = get_settings()
        self.api_url = (api_url or settings.jobspy_api_url).rstrip("/")
        self.api_key = settings.jobspy_api_key if api_key is None else api_key
        self.results_wanted = results_wanted or settings.jobspy_results_wanted

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        super().__init__(headers=headers, **kwargs)

    async def discover_jobs(self, criteria: CampaignSearchCriteria) -> DiscoveryResult:
        started = time.monotonic()
        errors: list[str] = []
        jobs: list[DiscoveredJob] = []
        total_found = 0

        search_term = build_search_term(criteria.target_roles)
        location = criteria.target_locations[0] if criteria.target_locations else ""

        try:
            logger.info(
                "Searching JobSpy",
                campaign_id=criteria.campaign_id,
                search_term=search_term,
                location=location,
            )
            postings = await self._search(search_term, location, criteria)
        except SOURCE_ERRORS as e:
            logger.warning("JobSpy fetch failed", error=str(e))
            errors.append(str(e))
            return self._result(jobs, started, errors=errors, total_found=total_found)

        total_found = len(postings)
        for posting in postings:
            try:
                if not meets_salary_floor(posting, criteria.salary_min):
                    continue
                jobs.append(self._map_posting(posting))
            except SOURCE_ERRORS as e:
                errors.append(f"Unreadable posting {posting.get('id')}: {e}")

        if len(criteria.target_locations) > 1:
            jobs = [
                j
                for j in jobs
                if matches_location(j.location, criteria.target_locations, criteria.remote_ok)
            ]
        logger.info("JobSpy jobs fetched", campaign_id=criteria.campaign_id, count=len(jobs))
        return self._result(jobs, started, errors=errors, total_found=total_found)

    async def health_check(self) -> HealthCheckResult:
        return await self._probe("GET", f"{self.api_url}/health", "JobSpy API available")

    async def _search(
        self,
        search_term: str,
        location: str,
        criteria: CampaignSearchCriteria,
    ) -> list[dict[str, Any]]:
        params = {
            "site_name": "indeed",
            "search_term": search_term,
            "results_wanted": str(self.results_wanted),
            "format": "json",
            "country_indeed": country_for_location(location),
        }
        if location:
            params["location"] = location
        if criteria.remote_ok:
            params["is_remote"] = "true"
        if criteria.contract_types:
            job_type = job_type_for_contract(criteria.contract_types[0])
            if job_type:
                params["job_type"] = job_type

        response = await self._request(
            "GET", f"{self.api_url}/api/v1/search_jobs", params=params
        )
        result = response.json()

        # The API has shipped three response shapes over time
        if isinstance(result, list):
            return result
        if isinstance(result, dict):
            if result.get("error"):
                raise ValueError(str(result["error"]))
            if isinstance(result.get("jobs"), list):
                return result["jobs"]
            if isinstance(result.get("data"), list):
                return result["data"]
        return []

    def _map_posting(self, posting: dict[str, Any]) -> DiscoveredJob:
        location = posting.get("location") or None
        description = posting.get("description") or ""

        if posting.get("is_remote"):
            remote_type = RemoteType.REMOTE.value
        elif location and "hybrid" in location.lower():
            remote_type = RemoteType.HYBRID.value
        else:
            remote_type = determine_remote_type(location, description)

        job_url = posting["job_url"]
        emails = posting.get("emails") or []

        return DiscoveredJob(
            external_id=f"jobspy-{posting.get('id') or stable_hash(job_url)}",
            title=posting["title"],
            company=posting.get("company") or "Unknown",
            location=location,
            description=description,
            requirements=extract_requirements(description),
            salary=format_salary(
                posting.get("min_amount"),
                posting.get("max_amount"),
                posting.get("currency") or "USD",
                period=posting.get("interval") or "yearly",
            ),
            contract_type=normalize_contract_type(posting.get("job_type")),
            remote_type=remote_type,
            url=job_url,
            posted_at=parse_date(posting.get("date_posted")),
            application_email=emails[0] if emails else None,
            application_url=job_url,
        )
