"""Registry of job source adapters and the fan-out across them."""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from job_discovery.db.models import JobSource, JobSourceType
from job_discovery.engines.sources.base import (
    CampaignSearchCriteria,
    DiscoveredJob,
    DiscoveryResult,
    HealthCheckResult,
    JobSourceAdapter,
    elapsed_ms,
)

logger = structlog.get_logger()


class UnknownSourceError(LookupError):
    """No adapter is registered under the requested source name."""

    def __init__(self, source_name: str):
        self.source_name = source_name
        super().__init__(f"No adapter registered for source: {source_name}")


@dataclass
class SourceResult:
    source: str
    job_count: int
    query_time_ms: int
    error: Optional[str] = None
    # Errors the adapter recovered from (partial results)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "source": self.source,
            "job_count": self.job_count,
            "query_time_ms": self.query_time_ms,
        }
        if self.error:
            data["error"] = self.error
        if self.warnings:
            data["warnings"] = self.warnings
        return data


@dataclass
class AggregatedMetadata:
    total_sources: int = 0
    successful_sources: int = 0
    failed_sources: list[str] = field(default_factory=list)
    total_jobs: int = 0
    query_time_ms: int = 0
    source_results: list[SourceResult] = field(default_factory=list)


@dataclass
class AggregatedDiscoveryResult:
    jobs: list[DiscoveredJob] = field(default_factory=list)
    metadata: AggregatedMetadata = field(default_factory=AggregatedMetadata)


@dataclass
class SourceStatus:
    name: str
    display_name: str
    type: str
    healthy: bool
    message: str
    response_time_ms: int
    last_checked: datetime
    supports_auto_apply: bool
    source_id: Optional[UUID]


class AdapterRegistry:
    """
    Holds every adapter by source name and links each one to its JobSource row.

    Constructed once per process and passed to whoever needs it.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._adapters: dict[str, JobSourceAdapter] = {}
        self._initialized = False

    def register_adapter(self, adapter: JobSourceAdapter) -> None:
        self._adapters[adapter.source_name] = adapter
        logger.info(
            "Registered adapter",
            source=adapter.source_name,
            display_name=adapter.display_name,
        )

    def get_adapter(self, source_name: str) -> Optional[JobSourceAdapter]:
        return self._adapters.get(source_name)

    def get_all_adapters(self) -> list[JobSourceAdapter]:
        return list(self._adapters.values())

    def get_adapters_by_type(self, source_type: JobSourceType) -> list[JobSourceAdapter]:
        return [a for a in self._adapters.values() if a.source_type == source_type]

    def get_active_adapters(self) -> list[JobSourceAdapter]:
        """Adapters whose persisted source identity has been resolved."""
        return [a for a in self._adapters.values() if a.get_source_id() is not None]

    async def initialize(self, create_missing: bool = False) -> None:
        """Link adapters to active JobSource rows by name.

        With create_missing, adapters that have no row at all get one now
        instead of on first use. Deactivated rows are left alone.
        """
        if self._initialized:
            return

        async with self.session_factory() as db:
            result = await db.execute(select(JobSource))
            sources = result.scalars().all()

        known = set()
        for source in sources:
            known.add(source.name)
            adapter = self._adapters.get(source.name)
            if adapter is None:
                logger.warning(
                    "Source has no registered adapter",
                    source=source.name,
                    display_name=source.display_name,
                )
            elif not source.is_active:
                logger.info("Source is deactivated", source=source.name)
            else:
                adapter.set_source_id(source.id)
                logger.info("Linked adapter to source", source=source.name, source_id=str(source.id))

        for adapter in self._adapters.values():
            if adapter.source_name in known:
                continue
            if create_missing:
                await self.ensure_source_exists(adapter)
            else:
                logger.warning(
                    "Adapter has no source row, will be created on first use",
                    source=adapter.source_name,
                )

        self._initialized = True
        logger.info("Adapter registry initialized", adapters=len(self._adapters))

    async def ensure_source_exists(self, adapter: JobSourceAdapter) -> UUID:
        """Resolve (creating if needed) the JobSource row for an adapter.

        Safe to call concurrently: a lost insert race re-reads the winner's row.
        """
        source_id = adapter.get_source_id()
        if source_id is not None:
            return source_id

        async with self.session_factory() as db:
            source = await self._find_source(db, adapter.source_name)
            if source is None:
                source = JobSource(
                    name=adapter.source_name,
                    display_name=adapter.display_name,
                    type=adapter.source_type.value,
                    supports_auto_apply=adapter.supports_auto_apply,
                    is_active=True,
                )
                db.add(source)
                try:
                    await db.commit()
                    logger.info(
                        "Created source for adapter",
                        source=adapter.source_name,
                        source_id=str(source.id),
                    )
                except IntegrityError:
                    await db.rollback()
                    source = await self._find_source(db, adapter.source_name)
                    if source is None:
                        raise

        adapter.set_source_id(source.id)
        return source.id

    async def _find_source(self, db: AsyncSession, name: str) -> Optional[JobSource]:
        result = await db.execute(select(JobSource).where(JobSource.name == name))
        return result.scalar_one_or_none()

    async def discover_from_source(
        self,
        source_name: str,
        criteria: CampaignSearchCriteria,
    ) -> DiscoveryResult:
        adapter = self._adapters.get(source_name)
        if adapter is None:
            raise UnknownSourceError(source_name)

        await self.ensure_source_exists(adapter)
        result = await adapter.discover_jobs(criteria)
        for job in result.jobs:
            job.source_name = adapter.source_name
        return result

    async def discover_from_sources(
        self,
        source_names: list[str],
        criteria: CampaignSearchCriteria,
    ) -> AggregatedDiscoveryResult:
        """Run the named sources concurrently. One source failing never blocks the rest."""
        started = time.monotonic()

        async def run_source(source_name: str):
            source_started = time.monotonic()
            try:
                result = await self.discover_from_source(source_name, criteria)
                return source_name, result, None, elapsed_ms(source_started)
            except Exception as e:
                logger.error("Source discovery failed", source=source_name, error=str(e))
                return source_name, None, str(e) or type(e).__name__, elapsed_ms(source_started)

        outcomes = await asyncio.gather(*(run_source(name) for name in source_names))

        aggregated = AggregatedDiscoveryResult()
        aggregated.metadata.total_sources = len(source_names)

        for source_name, result, error, query_time_ms in outcomes:
            if result is not None:
                aggregated.jobs.extend(result.jobs)
                aggregated.metadata.successful_sources += 1
                aggregated.metadata.source_results.append(
                    SourceResult(
                        source=source_name,
                        job_count=len(result.jobs),
                        query_time_ms=query_time_ms,
                        warnings=list(result.metadata.errors),
                    )
                )
            else:
                aggregated.metadata.failed_sources.append(source_name)
                aggregated.metadata.source_results.append(
                    SourceResult(
                        source=source_name,
                        job_count=0,
                        query_time_ms=query_time_ms,
                        error=error,
                    )
                )

        aggregated.metadata.total_jobs = len(aggregated.jobs)
        aggregated.metadata.query_time_ms = elapsed_ms(started)
        return aggregated

    async def discover_from_all_sources(
        self,
        criteria: CampaignSearchCriteria,
    ) -> AggregatedDiscoveryResult:
        source_names = [a.source_name for a in self.get_active_adapters()]
        if not source_names:
            logger.warning("No active adapters available for job discovery")
            return AggregatedDiscoveryResult()
        return await self.discover_from_sources(source_names, criteria)

    async def health_check_all(self) -> dict[str, HealthCheckResult]:
        """Health of every registered adapter. A raising check counts as unhealthy."""

        async def check(name: str, adapter: JobSourceAdapter):
            started = time.monotonic()
            try:
                return name, await adapter.health_check()
            except Exception as e:
                logger.warning("Health check raised", source=name, error=str(e))
                return name, HealthCheckResult(
                    healthy=False,
                    message=str(e) or "Health check failed",
                    response_time_ms=elapsed_ms(started),
                )

        results = await asyncio.gather(
            *(check(name, adapter) for name, adapter in self._adapters.items())
        )
        return dict(results)

    async def source_statuses(self) -> list[SourceStatus]:
        health = await self.health_check_all()
        return [
            SourceStatus(
                name=name,
                display_name=adapter.display_name,
                type=adapter.source_type.value,
                healthy=health[name].healthy,
                message=health[name].message,
                response_time_ms=health[name].response_time_ms,
                last_checked=health[name].last_checked,
                supports_auto_apply=adapter.supports_auto_apply,
                source_id=adapter.get_source_id(),
            )
            for name, adapter in self._adapters.items()
        ]

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()
