"""Welcome to the Jungle job source.

WTTJ serves its job search from a public Algolia index, so we query
Algolia directly with the site's frontend search credentials.
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
    elapsed_ms,
)
from job_discovery.engines.sources.matching import (
    extract_requirements,
    format_salary,
    normalize_contract_type,
    strip_html,
)

logger = structlog.get_logger()

HITS_PER_PAGE = 50

ATTRIBUTES_TO_RETRIEVE = [
    "objectID",
    "name",
    "reference",
    "slug",
    "profession",
    "contract_type",
    "experience_level",
    "salary",
    "office",
    "organization",
    "remote",
    "websites_urls",
    "published_at",
    "body_en",
    "body_fr",
    "profile_en",
    "profile_fr",
]

# Location fragment -> Algolia facet filter
LOCATION_FILTERS: list[tuple[str, str]] = [
    ("paris", "office.city:Paris"),
    ("lyon", "office.city:Lyon"),
    ("marseille", "office.city:Marseille"),
    ("bordeaux", "office.city:Bordeaux"),
    ("toulouse", "office.city:Toulouse"),
    ("france", "office.country:France"),
    ("remote", "remote:fulltime"),
]

CONTRACT_FILTERS: list[tuple[tuple[str, ...], str]] = [
    (("cdi", "permanent"), "contract_type.en:full_time"),
    (("cdd", "contract"), "contract_type.en:fixed_term"),
    (("freelance",), "contract_type.en:freelance"),
    (("internship", "stage"), "contract_type.en:internship"),
]


def _location_filter(location: str) -> str:
    normalized = location.lower()
    for fragment, facet in LOCATION_FILTERS:
        if fragment in normalized:
            return facet
    return f"office.city:{location}"


def _contract_filter(contract_type: str) -> str:
    normalized = contract_type.lower()
    for fragments, facet in CONTRACT_FILTERS:
        if any(f in normalized for f in fragments):
            return facet
    return f"contract_type.en:{contract_type}"


def build_filters(criteria: CampaignSearchCriteria) -> str:
    """Algolia filter expression for a campaign's locations, remote tolerance and contracts."""
    parts = []

    if criteria.target_locations:
        parts.append(
            "(" + " OR ".join(_location_filter(loc) for loc in criteria.target_locations) + ")"
        )

    if not criteria.remote_ok:
        parts.append("NOT remote:fulltime")

    if criteria.contract_types:
        parts.append(
            "(" + " OR ".join(_contract_filter(c) for c in criteria.contract_types) + ")"
        )

    return " AND ".join(parts)


class WTTJAdapter(HttpSourceAdapter):
    source_name = "wttj"
    display_name = "Welcome to the Jungle"
    source_type = JobSourceType.API
    supports_auto_apply = False
    rate_limit_preset = "wttj"

    def __init__(
        self,
        app_id: Optional[str] = None,
        api_key: Optional[str] = None,
        index: Optional[str] = None,
        **kwargs,
    ):
        settings = get_settings()
        self.app_id = app_id or settings.wttj_algolia_app_id
        self.api_key = api_key or settings.wttj_algolia_api_key
        self.index = index or settings.wttj_algolia_index
        super().__init__(
            headers={
                "X-Algolia-Application-Id": self.app_id,
                "X-Algolia-API-Key": self.api_key,
                "Content-Type": "application/json",
            },
            **kwargs,
        )

    @property
    def search_url(self) -> str:
        return f"https://{self.app_id}-dsn.algolia.net/1/indexes/{self.index}/query"

    async def discover_jobs(self, criteria: CampaignSearchCriteria) -> DiscoveryResult:
        started = time.monotonic()
        errors: list[str] = []
        filters = build_filters(criteria)
        queries = list(criteria.target_roles) or [""]

        # One query per role; a failed query does not stop the others
        hits_by_id: dict[str, dict[str, Any]] = {}
        total_found = 0
        for query in queries:
            try:
                hits = await self._search(query, filters)
            except SOURCE_ERRORS as e:
                logger.warning("WTTJ query failed", query=query, error=str(e))
                errors.append(f'Query "{query}": {e}')
                continue
            total_found += len(hits)
            for hit in hits:
                hits_by_id.setdefault(str(hit["objectID"]), hit)

        jobs = []
        for hit in hits_by_id.values():
            try:
                jobs.append(self._map_hit(hit))
            except SOURCE_ERRORS as e:
                errors.append(f"Unreadable hit {hit.get('objectID')}: {e}")

        logger.info(
            "WTTJ jobs fetched",
            campaign_id=criteria.campaign_id,
            queries=len(queries),
            unique=len(jobs),
        )
        return self._result(jobs, started, errors=errors, total_found=total_found)

    async def health_check(self) -> HealthCheckResult:
        started = time.monotonic()
        try:
            client = await self._http.get_client()
            response = await client.post(
                self.search_url,
                json={"query": "developer", "filters": "", "hitsPerPage": 1},
            )
            if not response.is_success:
                return HealthCheckResult(
                    healthy=False,
                    message=f"HTTP {response.status_code}",
                    response_time_ms=elapsed_ms(started),
                )
            data = response.json()
            return HealthCheckResult(
                healthy=bool(data.get("hits")),
                message=f"WTTJ API available ({data.get('nbHits', 0)} total jobs indexed)",
                response_time_ms=elapsed_ms(started),
            )
        except SOURCE_ERRORS as e:
            return HealthCheckResult(
                healthy=False,
                message=str(e) or "Health check failed",
                response_time_ms=elapsed_ms(started),
            )

    async def _search(self, query: str, filters: str) -> list[dict[str, Any]]:
        response = await self._request(
            "POST",
            self.search_url,
            json={
                "query": query,
                "filters": filters,
                "hitsPerPage": HITS_PER_PAGE,
                "attributesToRetrieve": ATTRIBUTES_TO_RETRIEVE,
            },
        )
        data = response.json()
        hits = data.get("hits")
        if not isinstance(hits, list):
            raise ValueError("Invalid Algolia response format")
        return hits

    def _map_hit(self, hit: dict[str, Any]) -> DiscoveredJob:
        description = strip_html(hit.get("body_en") or hit.get("body_fr"))
        profile = strip_html(hit.get("profile_en") or hit.get("profile_fr"))

        office = hit.get("office") or {}
        location = ", ".join(p for p in (office.get("city"), office.get("country")) if p) or "France"

        remote = hit.get("remote")
        if remote == "fulltime":
            location = "Remote"
            remote_type = RemoteType.REMOTE.value
        elif remote == "partial":
            location = f"{location} (Hybrid)"
            remote_type = RemoteType.HYBRID.value
        else:
            remote_type = RemoteType.ON_SITE.value

        salary = hit.get("salary") or {}
        contract = hit.get("contract_type") or {}
        organization = hit["organization"]
        published_at = hit.get("published_at")

        return DiscoveredJob(
            external_id=f"wttj-{hit['objectID']}",
            title=hit["name"],
            company=organization["name"],
            location=location,
            description=description,
            requirements=extract_requirements(f"{profile}\n{description}"),
            salary=format_salary(
                salary.get("min"),
                salary.get("max"),
                salary.get("currency") or "EUR",
                period=salary.get("period") or "year",
            ),
            contract_type=normalize_contract_type(
                contract.get("en") or contract.get("fr") or ContractType.FULL_TIME.value
            ),
            remote_type=remote_type,
            url=(
                "https://www.welcometothejungle.com/en/companies/"
                f"{organization['slug']}/jobs/{hit['slug']}"
            ),
            posted_at=(
                datetime.fromtimestamp(published_at, tz=timezone.utc)
                if isinstance(published_at, (int, float))
                else None
            ),
        )
