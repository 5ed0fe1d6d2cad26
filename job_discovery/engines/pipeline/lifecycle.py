"""Job offer lifecycle - state machine, analysis and the pipeline handlers.

Offers only move forward:

    DISCOVERED -> ANALYZING -> MATCHED -> APPLIED
    ANALYZING -> REJECTED (score below the campaign threshold)
    open offers (DISCOVERED, ANALYZING, MATCHED) -> EXPIRED
    anything not yet terminal -> REJECTED (user rejection)

ERROR is reachable from every open status and may be re-analyzed, so a
retried analyze unit picks the offer back up.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol, Union
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from job_discovery.config import get_settings
from job_discovery.db.models import (
    Application,
    ApplicationStatus,
    Campaign,
    JobOffer,
    JobOfferStatus,
)
from job_discovery.engines.discovery.deduplication import JobDeduplicationService
from job_discovery.engines.discovery.orchestrator import JobDiscoveryService
from job_discovery.engines.sources.matching import (
    matches_location,
    matches_role,
    normalize_contract_type,
)
from job_discovery.engines.sources.registry import AdapterRegistry
from job_discovery.queue.service import QueueService, WorkUnit, WorkUnitType

logger = structlog.get_logger()

S = JobOfferStatus

ALLOWED_TRANSITIONS: dict[JobOfferStatus, frozenset[JobOfferStatus]] = {
    S.DISCOVERED: frozenset({S.ANALYZING, S.EXPIRED, S.REJECTED, S.ERROR}),
    S.ANALYZING: frozenset({S.MATCHED, S.REJECTED, S.EXPIRED, S.ERROR}),
    S.MATCHED: frozenset({S.APPLIED, S.EXPIRED, S.REJECTED, S.ERROR}),
    S.ERROR: frozenset({S.ANALYZING, S.REJECTED}),
    S.APPLIED: frozenset(),
    S.REJECTED: frozenset(),
    S.EXPIRED: frozenset(),
}

# Scoring weights, out of 100
ROLE_WEIGHT = 60
LOCATION_WEIGHT = 25
CONTRACT_WEIGHT = 15


class InvalidTransitionError(ValueError):
    def __init__(self, current: JobOfferStatus, target: JobOfferStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move job offer from {current.value} to {target.value}")


class JobOfferNotFoundError(LookupError):
    def __init__(self, job_offer_id):
        self.job_offer_id = job_offer_id
        super().__init__(f"Job offer not found: {job_offer_id}")


def can_transition(current: Union[str, JobOfferStatus], target: JobOfferStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[JobOfferStatus(current)]


def transition(offer: JobOffer, target: JobOfferStatus) -> None:
    """Move an offer to a new status, refusing moves the state machine does not allow."""
    current = JobOfferStatus(offer.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
    offer.status = target.value


def _as_uuid(value: Union[str, UUID]) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


@dataclass
class MatchAnalysis:
    score: float
    reasons: dict = field(default_factory=dict)


class MatchScorer(Protocol):
    def score(self, offer: JobOffer, campaign: Campaign) -> MatchAnalysis:
        ...


class RoleFitScorer:
    """Deterministic fit score from the campaign's roles, locations and contract types.

    Criteria the campaign leaves empty count as satisfied.
    """

    def score(self, offer: JobOffer, campaign: Campaign) -> MatchAnalysis:
        reasons = {}
        score = 0.0

        roles = list(campaign.target_roles or [])
        role_match = not roles or matches_role(offer.title, roles)
        reasons["role"] = role_match
        if role_match:
            score += ROLE_WEIGHT

        locations = list(campaign.target_locations or [])
        location_match = not locations or matches_location(
            offer.location, locations, bool(campaign.remote_ok)
        )
        reasons["location"] = location_match
        if location_match:
            score += LOCATION_WEIGHT

        wanted = {normalize_contract_type(c) for c in campaign.contract_types or []}
        contract_match = not wanted or normalize_contract_type(offer.contract_type) in wanted
        reasons["contract"] = contract_match
        if contract_match:
            score += CONTRACT_WEIGHT

        return MatchAnalysis(score=score, reasons=reasons)


class JobAnalyzer:
    """Scores a discovered offer and moves it to MATCHED, REJECTED or APPLIED."""

    def __init__(
        self,
        db: AsyncSession,
        queue: QueueService,
        scorer: Optional[MatchScorer] = None,
    ):
        self.db = db
        self.queue = queue
        self.scorer = scorer or RoleFitScorer()

    async def analyze(self, job_offer_id: Union[str, UUID], test_mode: bool = False) -> Optional[JobOffer]:
        offer = await self.db.get(JobOffer, _as_uuid(job_offer_id))
        if offer is None:
            raise JobOfferNotFoundError(job_offer_id)

        if not can_transition(offer.status, S.ANALYZING):
            # Rejected or expired before the unit ran
            logger.info("Skipping analysis", job_offer_id=str(offer.id), status=offer.status)
            return None

        transition(offer, S.ANALYZING)
        await self.db.commit()

        try:
            campaign = await self.db.get(Campaign, offer.campaign_id)
            analysis = self.scorer.score(offer, campaign)
            offer.match_score = analysis.score
            offer.match_analysis = analysis.reasons

            if analysis.score < campaign.match_threshold:
                transition(offer, S.REJECTED)
                await self.db.commit()
                logger.info("Job offer rejected", job_offer_id=str(offer.id), score=analysis.score)
                return offer

            transition(offer, S.MATCHED)
            await self.db.commit()
            logger.info("Job offer matched", job_offer_id=str(offer.id), score=analysis.score)

            if campaign.auto_apply:
                await self._auto_apply(offer, campaign, test_mode)

            return offer

        except Exception as e:
            logger.error("Job offer analysis failed", job_offer_id=str(offer.id), error=str(e))
            await self.db.rollback()
            await self.db.refresh(offer)
            if can_transition(offer.status, S.ERROR):
                transition(offer, S.ERROR)
                await self.db.commit()
            raise

    async def _auto_apply(self, offer: JobOffer, campaign: Campaign, test_mode: bool) -> None:
        application = Application(
            job_offer_id=offer.id,
            campaign_id=campaign.id,
            owner_id=campaign.owner_id,
            status=ApplicationStatus.PENDING_GENERATION.value,
            requires_confirm=True,
            test_mode=test_mode,
        )
        self.db.add(application)
        transition(offer, S.APPLIED)
        await self.db.commit()

        await self.queue.add_job(
            WorkUnit(
                type=WorkUnitType.GENERATE,
                data={"application_id": str(application.id), "job_offer_id": str(offer.id)},
                owner_id=campaign.owner_id,
                test_mode=test_mode,
            )
        )
        logger.info(
            "Auto-applied to job offer",
            job_offer_id=str(offer.id),
            application_id=str(application.id),
        )


async def reject_job_offer(db: AsyncSession, job_offer_id: Union[str, UUID]) -> JobOffer:
    """User rejection. Raises InvalidTransitionError for offers already closed."""
    offer = await db.get(JobOffer, _as_uuid(job_offer_id))
    if offer is None:
        raise JobOfferNotFoundError(job_offer_id)

    transition(offer, S.REJECTED)
    await db.commit()
    logger.info("Job offer rejected by user", job_offer_id=str(offer.id))
    return offer


async def sweep_expired_offers(
    session_factory: async_sessionmaker[AsyncSession],
    max_age_days: Optional[int] = None,
) -> int:
    """Run the expiry sweep over every active campaign."""
    if max_age_days is None:
        max_age_days = get_settings().job_max_age_days

    async with session_factory() as db:
        result = await db.execute(select(Campaign.id).where(Campaign.is_active == True))
        campaign_ids = result.scalars().all()

        dedup = JobDeduplicationService(db)
        total = 0
        for campaign_id in campaign_ids:
            total += await dedup.mark_expired_jobs(campaign_id, max_age_days)

    logger.info("Expiry sweep complete", campaigns=len(campaign_ids), expired=total)
    return total


def register_pipeline_handlers(
    queue: QueueService,
    registry: AdapterRegistry,
    session_factory: async_sessionmaker[AsyncSession],
    scorer: Optional[MatchScorer] = None,
) -> None:
    """Wire the discover and analyze stages into the queue."""
    scorer = scorer or RoleFitScorer()

    async def handle_discover(unit: WorkUnit) -> None:
        # No-op once linked; worker processes link on their first discover unit
        await registry.initialize(create_missing=True)
        async with session_factory() as db:
            service = JobDiscoveryService(db, registry, queue)
            await service.run(
                unit.data["campaign_id"],
                owner_id=unit.owner_id,
                test_mode=unit.test_mode,
            )

    async def handle_analyze(unit: WorkUnit) -> None:
        async with session_factory() as db:
            analyzer = JobAnalyzer(db, queue, scorer)
            await analyzer.analyze(unit.data["job_offer_id"], test_mode=unit.test_mode)

    queue.register_handler(WorkUnitType.DISCOVER, handle_discover)
    queue.register_handler(WorkUnitType.ANALYZE, handle_analyze)
