"""Discovery orchestrator - one discovery run for one campaign.

A run:
1. Loads the campaign and builds its search criteria
2. Picks the campaign's configured sources, or every active adapter
3. Fans out across sources through the adapter registry
4. Drops expired postings and deduplicates against the campaign's offers
5. Persists the unique postings and enqueues one analyze unit per offer
6. Records the run (counts, per-source breakdown, timings) in discovery_runs
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union
from uuid import UUID, uuid4

import structlog
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from job_discovery.config import get_settings
from job_discovery.db.models import Campaign, DiscoveryRun, JobOffer, JobOfferStatus
from job_discovery.engines.discovery.deduplication import (
    DuplicateMatchType,
    JobDeduplicationService,
    is_expired,
)
from job_discovery.engines.sources.base import CampaignSearchCriteria, DiscoveredJob, elapsed_ms
from job_discovery.engines.sources.registry import AdapterRegistry
from job_discovery.queue.service import QueueService, WorkUnit, WorkUnitType

logger = structlog.get_logger()


class CampaignNotFoundError(LookupError):
    def __init__(self, campaign_id):
        self.campaign_id = campaign_id
        super().__init__(f"Campaign not found: {campaign_id}")


@dataclass
class DiscoverySummary:
    run_id: Optional[UUID]
    jobs_found: int = 0
    new_jobs: int = 0
    duplicates: int = 0
    expired: int = 0
    duplicates_by_type: dict[str, int] = field(default_factory=dict)
    source_results: list[dict] = field(default_factory=list)
    failed_sources: list[str] = field(default_factory=list)
    query_time_ms: int = 0
    duration_ms: int = 0
    no_sources: bool = False


class JobDiscoveryService:
    """Runs discovery for a campaign and feeds new offers into the pipeline."""

    def __init__(
        self,
        db: AsyncSession,
        registry: AdapterRegistry,
        queue: QueueService,
        dedup: Optional[JobDeduplicationService] = None,
        max_age_days: Optional[int] = None,
    ):
        self.db = db
        self.registry = registry
        self.queue = queue
        self.dedup = dedup or JobDeduplicationService(db)
        self.max_age_days = get_settings().job_max_age_days if max_age_days is None else max_age_days

    async def run(
        self,
        campaign_id: Union[str, UUID],
        owner_id: Optional[str] = None,
        test_mode: bool = False,
    ) -> DiscoverySummary:
        campaign_uuid = campaign_id if isinstance(campaign_id, UUID) else UUID(str(campaign_id))
        campaign = await self.db.get(Campaign, campaign_uuid)
        if campaign is None:
            raise CampaignNotFoundError(campaign_id)

        run = DiscoveryRun(
            campaign_id=campaign.id,
            status="running",
            test_mode=test_mode,
            logs=[],
        )
        self.db.add(run)
        await self.db.commit()

        started = time.monotonic()
        summary = DiscoverySummary(run_id=run.id)
        log = logger.bind(campaign_id=str(campaign.id), run_id=str(run.id))

        try:
            criteria = CampaignSearchCriteria.from_campaign(campaign)
            source_names = self._resolve_sources(campaign)

            if not source_names:
                log.warning("No job sources available for campaign")
                summary.no_sources = True
                await self._log_to_run(run, "warn", "No job sources configured or active", commit=False)
                await self._finish_run(run, summary, started)
                return summary

            await self._log_to_run(
                run, "info", f"Querying {len(source_names)} sources", data={"sources": source_names}
            )
            aggregated = await self.registry.discover_from_sources(source_names, criteria)

            summary.jobs_found = aggregated.metadata.total_jobs
            summary.failed_sources = list(aggregated.metadata.failed_sources)
            summary.query_time_ms = aggregated.metadata.query_time_ms
            summary.source_results = [r.to_dict() for r in aggregated.metadata.source_results]

            fresh_jobs = [j for j in aggregated.jobs if not is_expired(j, self.max_age_days)]
            summary.expired = len(aggregated.jobs) - len(fresh_jobs)

            dedup_result = await self.dedup.deduplicate(campaign.id, fresh_jobs)
            summary.duplicates = dedup_result.stats.duplicates
            summary.duplicates_by_type = dict(dedup_result.stats.by_match_type)

            # Offers are only written once the whole batch is resolved
            created_ids = await self._persist(campaign, dedup_result.unique_jobs)
            summary.new_jobs = len(created_ids)

            # Stored by an overlapping run between our read and our insert
            raced = len(dedup_result.unique_jobs) - len(created_ids)
            if raced:
                summary.duplicates += raced
                key = DuplicateMatchType.EXTERNAL_ID.value
                summary.duplicates_by_type[key] = summary.duplicates_by_type.get(key, 0) + raced
                log.info("Skipped postings stored by a concurrent run", count=raced)

            for offer_id in created_ids:
                await self.queue.add_job(
                    WorkUnit(
                        type=WorkUnitType.ANALYZE,
                        data={"job_offer_id": str(offer_id), "campaign_id": str(campaign.id)},
                        owner_id=owner_id or campaign.owner_id,
                        test_mode=test_mode,
                    )
                )

            await self._log_to_run(
                run,
                "info",
                f"Discovered {summary.new_jobs} new jobs",
                data={
                    "found": summary.jobs_found,
                    "duplicates": summary.duplicates,
                    "expired": summary.expired,
                    "failed_sources": summary.failed_sources,
                },
                commit=False,
            )
            await self._finish_run(run, summary, started)

            log.info(
                "Discovery run completed",
                found=summary.jobs_found,
                new=summary.new_jobs,
                duplicates=summary.duplicates,
                expired=summary.expired,
                failed_sources=summary.failed_sources,
            )
            return summary

        except Exception as e:
            log.error("Discovery run failed", error=str(e))
            await self.db.rollback()
            await self.db.refresh(run)
            await self._log_to_run(run, "error", "Discovery run failed", data={"error": str(e)}, commit=False)
            await self._finish_run(run, summary, started, error=e)
            raise

    def _resolve_sources(self, campaign: Campaign) -> list[str]:
        """The campaign's own active sources if it configured any, else every active adapter.

        A campaign whose configured sources are all deactivated searches nothing.
        """
        if campaign.job_sources:
            return [
                cs.source.name
                for cs in campaign.job_sources
                if cs.source is not None and cs.source.is_active
            ]
        return [a.source_name for a in self.registry.get_active_adapters()]

    async def _persist(self, campaign: Campaign, jobs: list[DiscoveredJob]) -> list[UUID]:
        """Insert the postings and return the ids of the rows actually created.

        Postings another run stored in the meantime hit the
        (campaign_id, external_id) constraint and are skipped.
        """
        if not jobs:
            return []

        dialect = self.db.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        table = JobOffer.__table__
        stmt = (
            insert(table)
            .values([self._offer_values(campaign, job) for job in jobs])
            .on_conflict_do_nothing(index_elements=["campaign_id", "external_id"])
            .returning(table.c.id)
        )
        result = await self.db.execute(stmt)
        created = list(result.scalars().all())
        await self.db.commit()
        return created

    def _offer_values(self, campaign: Campaign, job: DiscoveredJob) -> dict:
        adapter = self.registry.get_adapter(job.source_name) if job.source_name else None
        return dict(
            id=uuid4(),
            campaign_id=campaign.id,
            job_source_id=adapter.get_source_id() if adapter else None,
            external_id=job.external_id,
            title=job.title,
            company=job.company,
            location=job.location,
            description=job.description,
            requirements=list(job.requirements),
            salary=job.salary,
            contract_type=job.contract_type,
            remote_type=job.remote_type,
            url=job.url,
            application_email=job.application_email,
            application_url=job.application_url,
            posted_at=job.posted_at,
            status=JobOfferStatus.DISCOVERED.value,
            discovered_at=job.posted_at or datetime.now(timezone.utc),
        )

    async def _finish_run(
        self,
        run: DiscoveryRun,
        summary: DiscoverySummary,
        started: float,
        error: Optional[Exception] = None,
    ) -> None:
        summary.duration_ms = elapsed_ms(started)

        run.status = "failed" if error else "completed"
        run.error_message = str(error)[:1000] if error else None
        run.jobs_found = summary.jobs_found
        run.new_jobs = summary.new_jobs
        run.duplicates = summary.duplicates
        run.expired = summary.expired
        run.duplicates_by_type = summary.duplicates_by_type
        run.source_results = summary.source_results
        run.query_time_ms = summary.query_time_ms
        run.duration_ms = summary.duration_ms
        run.completed_at = datetime.now(timezone.utc)
        await self.db.commit()

    async def _log_to_run(
        self,
        run: DiscoveryRun,
        level: str,
        msg: str,
        data: Optional[dict] = None,
        commit: bool = True,
    ) -> None:
        """Append a log entry to the run, committing for real-time visibility."""
        log_entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "msg": msg,
            "run_id": str(run.id)[:8],
        }
        if data:
            log_entry["data"] = data

        # New list so the JSON column registers the change
        run.logs = (run.logs or []) + [log_entry]

        if commit:
            await self.db.commit()
