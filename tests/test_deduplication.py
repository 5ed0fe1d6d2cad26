from datetime import datetime, timedelta, timezone

import pytest

from job_discovery.db.models import Campaign, JobOfferStatus
from job_discovery.engines.discovery.deduplication import (
    DuplicateMatchType,
    JobDeduplicationService,
    create_fuzzy_key,
    is_expired,
    normalize_text,
    normalize_url,
)
from tests.factories import make_job, make_offer


@pytest.mark.parametrize(
    "url,expected",
    [
        (
            "https://www.Example.com/Jobs/42/?utm_source=feed&slug=abc&id=7",
            "https://example.com/jobs/42?id=7&slug=abc",
        ),
        ("https://example.com/jobs/42?ref=twitter", "https://example.com/jobs/42"),
        ("HTTP://Host.example:8080/a/", "http://host.example:8080/a"),
        ("https://example.com/view?job=9&job=10", "https://example.com/view?job=9"),
        ("not a url", "not a url"),
        ("/relative/Path", "/relative/path"),
    ],
)
def test_normalize_url(url, expected):
    assert normalize_url(url) == expected


def test_fuzzy_key_ignores_case_and_punctuation():
    assert normalize_text("  Senior   Engineer! ") == "senior engineer"
    assert create_fuzzy_key("Acme, Inc.", "Senior  Engineer!", None) == "acme inc|senior engineer|"
    assert create_fuzzy_key("ACME INC", "senior engineer", "") == create_fuzzy_key(
        "Acme, Inc.", "Senior Engineer", None
    )


class TestIsExpired:
    def test_undated_never_expires(self):
        assert not is_expired(make_job(posted_at=None))

    def test_age_against_threshold(self):
        now = datetime.now(timezone.utc)
        assert not is_expired(make_job(posted_at=now - timedelta(days=29)))
        assert is_expired(make_job(posted_at=now - timedelta(days=31)))
        assert is_expired(make_job(posted_at=now - timedelta(days=8)), max_age_days=7)

    def test_naive_dates_are_utc(self):
        naive = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=40)
        assert is_expired(make_job(posted_at=naive))


@pytest.fixture
async def other_campaign(db):
    campaign = Campaign(name="Other search", owner_id="user-2")
    db.add(campaign)
    await db.commit()
    return campaign


class TestDeduplicate:
    async def test_match_tiers_in_priority_order(self, db, campaign):
        existing = make_offer(campaign.id)
        db.add(existing)
        await db.commit()

        jobs = [
            # Same posting re-polled, details changed
            make_job(external_id="src-1", url="https://acme.example/jobs/other", title="Renamed"),
            # Same URL with tracking noise
            make_job(
                external_id="feed-2",
                url="https://www.acme.example/jobs/1/?utm_source=feed",
                title="Different title",
            ),
            # Same company, title and location from another board
            make_job(
                external_id="board-3",
                url="https://board.example/postings/99",
                company="ACME",
                title="Backend Engineer!",
                location="remote",
            ),
            make_job(external_id="new-4", url="https://acme.example/jobs/4", title="Data Engineer"),
            # Same URL as the job above, from another source in this batch
            make_job(external_id="new-5", url="https://acme.example/jobs/4?ref=x", title="Analyst"),
        ]

        result = await JobDeduplicationService(db).deduplicate(campaign.id, jobs)

        assert [j.external_id for j in result.unique_jobs] == ["new-4"]
        assert [(d.job.external_id, d.match_type) for d in result.duplicates] == [
            ("src-1", DuplicateMatchType.EXTERNAL_ID),
            ("feed-2", DuplicateMatchType.URL),
            ("board-3", DuplicateMatchType.FUZZY),
        ]
        assert all(d.existing_job_id == existing.id for d in result.duplicates)

        stats = result.stats
        assert stats.total == 5
        assert stats.unique == 1
        assert stats.duplicates == 4
        assert stats.batch_duplicates == 1
        assert stats.by_match_type == {"external_id": 1, "url": 2, "fuzzy": 1}

    async def test_external_id_wins_over_url(self, db, campaign):
        first = make_offer(campaign.id, external_id="a", url="https://acme.example/jobs/a")
        second = make_offer(campaign.id, external_id="b", url="https://acme.example/jobs/b")
        db.add_all([first, second])
        await db.commit()

        job = make_job(external_id="a", url="https://acme.example/jobs/b")
        result = await JobDeduplicationService(db).deduplicate(str(campaign.id), [job])

        [match] = result.duplicates
        assert match.match_type == DuplicateMatchType.EXTERNAL_ID
        assert match.existing_job_id == first.id

    async def test_scoped_to_campaign(self, db, campaign, other_campaign):
        db.add(make_offer(other_campaign.id))
        await db.commit()

        result = await JobDeduplicationService(db).deduplicate(campaign.id, [make_job()])

        assert len(result.unique_jobs) == 1
        assert result.stats.duplicates == 0

    async def test_first_batch_occurrence_wins(self, db, campaign):
        jobs = [
            make_job(external_id="remoteok-1", url="https://a.example/1"),
            make_job(external_id="remoteok-1", url="https://a.example/2"),
            make_job(external_id="wttj-1", url="https://b.example/1"),
        ]
        result = await JobDeduplicationService(db).deduplicate(campaign.id, jobs)

        # Third job shares company, title and location with the first
        assert [j.url for j in result.unique_jobs] == ["https://a.example/1"]
        assert result.duplicates == []
        assert result.stats.batch_duplicates == 2
        assert result.stats.by_match_type == {"external_id": 1, "fuzzy": 1}

    async def test_empty_batch(self, db, campaign):
        result = await JobDeduplicationService(db).deduplicate(campaign.id, [])
        assert result.unique_jobs == []
        assert result.stats.total == 0


class TestMarkExpired:
    async def test_sweeps_old_open_offers(self, db, campaign, other_campaign):
        old = datetime.now(timezone.utc) - timedelta(days=40)
        fresh = datetime.now(timezone.utc) - timedelta(days=2)

        old_discovered = make_offer(campaign.id, external_id="1", discovered_at=old)
        old_matched = make_offer(
            campaign.id, external_id="2", discovered_at=old, status=JobOfferStatus.MATCHED.value
        )
        old_applied = make_offer(
            campaign.id, external_id="3", discovered_at=old, status=JobOfferStatus.APPLIED.value
        )
        recent = make_offer(campaign.id, external_id="4", discovered_at=fresh)
        already_stamped = make_offer(campaign.id, external_id="5", discovered_at=old, expires_at=old)
        elsewhere = make_offer(other_campaign.id, external_id="6", discovered_at=old)
        offers = [old_discovered, old_matched, old_applied, recent, already_stamped, elsewhere]
        db.add_all(offers)
        await db.commit()

        count = await JobDeduplicationService(db).mark_expired_jobs(campaign.id, max_age_days=30)

        assert count == 2
        for offer in offers:
            await db.refresh(offer)
        assert old_discovered.status == "EXPIRED"
        assert old_discovered.expires_at is not None
        assert old_matched.status == "EXPIRED"
        assert old_applied.status == "APPLIED"
        assert recent.status == "DISCOVERED"
        assert already_stamped.status == "DISCOVERED"
        assert elsewhere.status == "DISCOVERED"

    async def test_nothing_to_sweep(self, db, campaign):
        db.add(make_offer(campaign.id))
        await db.commit()
        assert await JobDeduplicationService(db).mark_expired_jobs(campaign.id) == 0


async def test_duplicate_stats(db, campaign):
    db.add_all(
        [
            make_offer(campaign.id, external_id="1", url="https://acme.example/jobs/1"),
            make_offer(campaign.id, external_id="2", url="https://acme.example/jobs/1?utm_medium=rss"),
            make_offer(campaign.id, external_id="3", url="https://acme.example/jobs/2"),
            make_offer(
                campaign.id,
                external_id="4",
                url="https://globex.example/jobs/1",
                company="Globex",
                title="Designer",
                location="Paris",
            ),
        ]
    )
    await db.commit()

    stats = await JobDeduplicationService(db).get_duplicate_stats(campaign.id)

    assert stats == {"total_jobs": 4, "unique_urls": 3, "potential_duplicates": 1}
