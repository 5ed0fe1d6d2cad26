import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from job_discovery.db.models import (
    Application,
    BackgroundJob,
    Campaign,
    DiscoveryRun,
    JobOffer,
    JobOfferStatus,
)
from job_discovery.engines.pipeline.lifecycle import (
    InvalidTransitionError,
    JobAnalyzer,
    JobOfferNotFoundError,
    MatchAnalysis,
    RoleFitScorer,
    can_transition,
    register_pipeline_handlers,
    reject_job_offer,
    sweep_expired_offers,
    transition,
)
from job_discovery.engines.sources.mock import MockAdapter
from job_discovery.queue.service import WorkUnitType
from job_discovery.workers.tasks import enqueue_discovery
from tests.factories import RecordingQueue, make_offer

S = JobOfferStatus


class ExplodingScorer:
    def score(self, offer, campaign):
        raise RuntimeError("scorer crashed")


class FixedScorer:
    def __init__(self, score):
        self.value = score

    def score(self, offer, campaign):
        return MatchAnalysis(score=self.value, reasons={"fixed": True})


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (S.DISCOVERED, S.ANALYZING, True),
        (S.ANALYZING, S.MATCHED, True),
        (S.ANALYZING, S.REJECTED, True),
        (S.MATCHED, S.APPLIED, True),
        (S.MATCHED, S.EXPIRED, True),
        (S.ERROR, S.ANALYZING, True),
        (S.DISCOVERED, S.MATCHED, False),
        (S.DISCOVERED, S.APPLIED, False),
        (S.MATCHED, S.DISCOVERED, False),
        (S.APPLIED, S.REJECTED, False),
        (S.REJECTED, S.ANALYZING, False),
        (S.EXPIRED, S.DISCOVERED, False),
        (S.ERROR, S.MATCHED, False),
    ],
)
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_can_transition_accepts_stored_strings():
    assert can_transition("DISCOVERED", S.ANALYZING)


def test_transition_refuses_backward_moves():
    offer = JobOffer(status=S.APPLIED.value)

    with pytest.raises(InvalidTransitionError) as exc_info:
        transition(offer, S.DISCOVERED)

    assert exc_info.value.current == S.APPLIED
    assert exc_info.value.target == S.DISCOVERED
    assert offer.status == "APPLIED"


class TestRoleFitScorer:
    def campaign(self, **overrides):
        values = dict(
            target_roles=["Backend Engineer"],
            target_locations=["Berlin"],
            contract_types=["Full-time"],
            remote_ok=True,
        )
        values.update(overrides)
        return Campaign(**values)

    def offer(self, **overrides):
        values = dict(title="Senior Backend Engineer", location="Berlin, Germany", contract_type="CDI")
        values.update(overrides)
        return JobOffer(**values)

    def test_full_match(self):
        analysis = RoleFitScorer().score(self.offer(), self.campaign())
        assert analysis.score == 100
        assert analysis.reasons == {"role": True, "location": True, "contract": True}

    def test_partial_match(self):
        analysis = RoleFitScorer().score(
            self.offer(title="Graphic Designer", contract_type="Internship"), self.campaign()
        )
        assert analysis.score == 25
        assert analysis.reasons == {"role": False, "location": True, "contract": False}

    def test_remote_offer_with_remote_tolerance(self):
        analysis = RoleFitScorer().score(self.offer(location="Remote (EU)"), self.campaign())
        assert analysis.reasons["location"]

        strict = RoleFitScorer().score(self.offer(location="Remote (EU)"), self.campaign(remote_ok=False))
        assert not strict.reasons["location"]
        assert strict.score == 75

    def test_empty_criteria_are_satisfied(self):
        campaign = self.campaign(target_roles=[], target_locations=[], contract_types=[])
        assert RoleFitScorer().score(self.offer(title="Anything"), campaign).score == 100


class TestJobAnalyzer:
    async def add_offer(self, db, campaign, **overrides):
        offer = make_offer(campaign.id, **overrides)
        db.add(offer)
        await db.commit()
        return offer

    async def test_match(self, db, campaign):
        offer = await self.add_offer(db, campaign)
        queue = RecordingQueue()

        result = await JobAnalyzer(db, queue).analyze(offer.id)

        assert result is offer
        assert offer.status == "MATCHED"
        assert offer.match_score == 100
        assert offer.match_analysis == {"role": True, "location": True, "contract": True}
        assert queue.units == []

    async def test_below_threshold_rejects(self, db, campaign):
        offer = await self.add_offer(db, campaign, title="Graphic Designer", location="Berlin")

        await JobAnalyzer(db, RecordingQueue()).analyze(str(offer.id))

        assert offer.status == "REJECTED"
        assert offer.match_score == 15

    async def test_threshold_is_inclusive(self, db, campaign):
        offer = await self.add_offer(db, campaign)
        await JobAnalyzer(db, RecordingQueue(), FixedScorer(60)).analyze(offer.id)
        assert offer.status == "MATCHED"

    async def test_auto_apply(self, db, campaign):
        campaign.auto_apply = True
        await db.commit()
        offer = await self.add_offer(db, campaign)
        queue = RecordingQueue()

        await JobAnalyzer(db, queue).analyze(offer.id, test_mode=True)

        assert offer.status == "APPLIED"
        application = (await db.execute(select(Application))).scalar_one()
        assert application.job_offer_id == offer.id
        assert application.campaign_id == campaign.id
        assert application.owner_id == "user-1"
        assert application.status == "PENDING_GENERATION"
        assert application.requires_confirm
        assert application.test_mode

        [unit] = queue.units
        assert unit.type == WorkUnitType.GENERATE
        assert unit.data == {"application_id": str(application.id), "job_offer_id": str(offer.id)}
        assert unit.test_mode

    async def test_auto_apply_skipped_on_reject(self, db, campaign):
        campaign.auto_apply = True
        await db.commit()
        offer = await self.add_offer(db, campaign)
        queue = RecordingQueue()

        await JobAnalyzer(db, queue, FixedScorer(10)).analyze(offer.id)

        assert offer.status == "REJECTED"
        assert queue.units == []

    async def test_scorer_failure_marks_error(self, db, campaign):
        offer = await self.add_offer(db, campaign)

        with pytest.raises(RuntimeError, match="scorer crashed"):
            await JobAnalyzer(db, RecordingQueue(), ExplodingScorer()).analyze(offer.id)

        await db.refresh(offer)
        assert offer.status == "ERROR"
        assert offer.match_score is None

    async def test_errored_offer_can_be_retried(self, db, campaign):
        offer = await self.add_offer(db, campaign, status=S.ERROR.value)
        await JobAnalyzer(db, RecordingQueue()).analyze(offer.id)
        assert offer.status == "MATCHED"

    @pytest.mark.parametrize("status", [S.REJECTED, S.EXPIRED, S.APPLIED, S.MATCHED])
    async def test_skips_offers_past_discovery(self, db, campaign, status):
        offer = await self.add_offer(db, campaign, status=status.value)

        assert await JobAnalyzer(db, RecordingQueue()).analyze(offer.id) is None
        assert offer.status == status.value
        assert offer.match_score is None

    async def test_missing_offer(self, db):
        with pytest.raises(JobOfferNotFoundError):
            await JobAnalyzer(db, RecordingQueue()).analyze(uuid.uuid4())


class TestRejectJobOffer:
    async def test_rejects_open_offer(self, db, campaign):
        offer = make_offer(campaign.id, status=S.MATCHED.value)
        db.add(offer)
        await db.commit()

        assert (await reject_job_offer(db, offer.id)).status == "REJECTED"

    async def test_applied_offer_cannot_be_rejected(self, db, campaign):
        offer = make_offer(campaign.id, status=S.APPLIED.value)
        db.add(offer)
        await db.commit()

        with pytest.raises(InvalidTransitionError):
            await reject_job_offer(db, offer.id)

    async def test_missing_offer(self, db):
        with pytest.raises(JobOfferNotFoundError):
            await reject_job_offer(db, str(uuid.uuid4()))


async def test_sweep_covers_active_campaigns_only(db, session_factory, campaign):
    paused = Campaign(name="Paused", owner_id="user-1", is_active=False)
    db.add(paused)
    await db.commit()

    old = datetime.now(timezone.utc) - timedelta(days=45)
    db.add_all(
        [
            make_offer(campaign.id, external_id="1", discovered_at=old),
            make_offer(campaign.id, external_id="2", discovered_at=old, status=S.ANALYZING.value),
            make_offer(campaign.id, external_id="3"),
            make_offer(paused.id, external_id="4", discovered_at=old),
        ]
    )
    await db.commit()

    assert await sweep_expired_offers(session_factory, max_age_days=30) == 2

    statuses = dict((await db.execute(select(JobOffer.external_id, JobOffer.status))).all())
    assert statuses == {"1": "EXPIRED", "2": "EXPIRED", "3": "DISCOVERED", "4": "DISCOVERED"}


async def test_sweep_with_zero_max_age_expires_everything_open(db, session_factory, campaign):
    db.add(make_offer(campaign.id, discovered_at=datetime.now(timezone.utc) - timedelta(minutes=1)))
    await db.commit()

    assert await sweep_expired_offers(session_factory, max_age_days=0) == 1


class TestPipelineHandlers:
    async def test_discover_then_analyze(self, db, session_factory, queue, registry, campaign):
        registry.register_adapter(MockAdapter(enabled=True))
        register_pipeline_handlers(queue, registry, session_factory)

        await enqueue_discovery(queue, campaign.id, owner_id="user-1")
        await queue.wait_until_idle()

        assert queue.failures == []

        run = (await db.execute(select(DiscoveryRun))).scalar_one()
        assert run.status == "completed"
        assert run.new_jobs > 0

        offers = (await db.execute(select(JobOffer))).scalars().all()
        assert len(offers) == run.new_jobs
        assert {o.status for o in offers} == {"MATCHED"}

        jobs = (await db.execute(select(BackgroundJob))).scalars().all()
        assert sorted(j.type for j in jobs) == ["analyze"] * run.new_jobs + ["discover"]
        assert {j.status for j in jobs} == {"completed"}
        assert {j.attempts for j in jobs} == {1}

    async def test_unknown_campaign_fails_unit(self, session_factory, queue, registry):
        register_pipeline_handlers(queue, registry, session_factory)

        await enqueue_discovery(queue, str(uuid.uuid4()))
        await queue.wait_until_idle()

        [failure] = queue.failures
        assert failure.unit.type == WorkUnitType.DISCOVER
        assert "Campaign not found" in str(failure.error)

    async def test_handlers_register_once(self, session_factory, queue, registry):
        register_pipeline_handlers(queue, registry, session_factory)
        with pytest.raises(ValueError):
            register_pipeline_handlers(queue, registry, session_factory)
