import asyncio
import time

import pytest
from sqlalchemy import func, select

from job_discovery.db.models import JobSource, JobSourceType
from job_discovery.engines.sources.registry import AdapterRegistry, UnknownSourceError
from tests.factories import StaticAdapter, criteria, make_job


class PartialAdapter(StaticAdapter):
    """Returns its jobs along with errors it recovered from."""

    async def discover_jobs(self, search):
        started = time.monotonic()
        return self._result(list(self.jobs), started, errors=["page 2 timed out"])


async def add_source(db, name, is_active=True):
    source = JobSource(
        name=name,
        display_name=name.title(),
        type=JobSourceType.API.value,
        is_active=is_active,
    )
    db.add(source)
    await db.commit()
    return source


class TestEnsureSourceExists:
    async def test_creates_row_once(self, registry, db):
        adapter = StaticAdapter("alpha")
        registry.register_adapter(adapter)

        source_id = await registry.ensure_source_exists(adapter)
        again = await registry.ensure_source_exists(adapter)

        assert source_id == again == adapter.get_source_id()
        count = await db.scalar(select(func.count()).select_from(JobSource))
        assert count == 1

        source = await db.get(JobSource, source_id)
        assert source.name == "alpha"
        assert source.display_name == "Alpha"
        assert source.type == "API"
        assert source.is_active

    async def test_reuses_existing_row(self, registry, db):
        existing = await add_source(db, "alpha")
        adapter = StaticAdapter("alpha")

        assert await registry.ensure_source_exists(adapter) == existing.id

    async def test_lost_insert_race_reads_winner(self, registry, db, monkeypatch):
        winner = await add_source(db, "alpha")
        adapter = StaticAdapter("alpha")

        real_find = registry._find_source
        lookups = []

        async def stale_first_lookup(session, name):
            lookups.append(name)
            if len(lookups) == 1:
                # Another process inserts between our lookup and our insert
                return None
            return await real_find(session, name)

        monkeypatch.setattr(registry, "_find_source", stale_first_lookup)

        assert await registry.ensure_source_exists(adapter) == winner.id
        assert len(lookups) == 2
        count = await db.scalar(select(func.count()).select_from(JobSource))
        assert count == 1


class TestInitialize:
    async def test_links_active_rows_only(self, registry, db):
        active = await add_source(db, "alpha")
        await add_source(db, "beta", is_active=False)
        await add_source(db, "orphan")

        alpha, beta, gamma = StaticAdapter("alpha"), StaticAdapter("beta"), StaticAdapter("gamma")
        for adapter in (alpha, beta, gamma):
            registry.register_adapter(adapter)

        await registry.initialize()

        assert alpha.get_source_id() == active.id
        assert beta.get_source_id() is None
        assert gamma.get_source_id() is None
        assert registry.get_active_adapters() == [alpha]

    async def test_create_missing(self, registry, db):
        await add_source(db, "beta", is_active=False)
        beta, gamma = StaticAdapter("beta"), StaticAdapter("gamma")
        registry.register_adapter(beta)
        registry.register_adapter(gamma)

        await registry.initialize(create_missing=True)

        # Deactivated rows stay deactivated
        assert beta.get_source_id() is None
        assert gamma.get_source_id() is not None
        assert registry.get_active_adapters() == [gamma]

    async def test_runs_once(self, registry, db):
        adapter = StaticAdapter("alpha")
        registry.register_adapter(adapter)
        await registry.initialize()

        await add_source(db, "alpha")
        await registry.initialize()

        assert adapter.get_source_id() is None


class TestLookup:
    def test_by_name_and_type(self, registry):
        api = StaticAdapter("alpha")
        rss = StaticAdapter("beta")
        rss.source_type = JobSourceType.RSS
        registry.register_adapter(api)
        registry.register_adapter(rss)

        assert registry.get_adapter("alpha") is api
        assert registry.get_adapter("missing") is None
        assert registry.get_all_adapters() == [api, rss]
        assert registry.get_adapters_by_type(JobSourceType.RSS) == [rss]

    def test_same_name_replaces(self, registry):
        first, second = StaticAdapter("alpha"), StaticAdapter("alpha")
        registry.register_adapter(first)
        registry.register_adapter(second)
        assert registry.get_all_adapters() == [second]


class TestDiscovery:
    async def test_unknown_source(self, registry):
        with pytest.raises(UnknownSourceError) as exc_info:
            await registry.discover_from_source("nowhere", criteria())
        assert exc_info.value.source_name == "nowhere"

    async def test_stamps_source_name_and_links(self, registry):
        adapter = StaticAdapter("alpha", jobs=[make_job()])
        registry.register_adapter(adapter)

        result = await registry.discover_from_source("alpha", criteria())

        assert [j.source_name for j in result.jobs] == ["alpha"]
        assert adapter.get_source_id() is not None

    async def test_failure_is_isolated(self, registry):
        registry.register_adapter(StaticAdapter("alpha", jobs=[make_job(), make_job(external_id="src-2")]))
        registry.register_adapter(StaticAdapter("broken", error=RuntimeError("boom")))
        registry.register_adapter(StaticAdapter("silent", error=ConnectionError()))

        result = await registry.discover_from_sources(["alpha", "broken", "silent"], criteria())

        assert len(result.jobs) == 2
        meta = result.metadata
        assert meta.total_sources == 3
        assert meta.successful_sources == 1
        assert meta.failed_sources == ["broken", "silent"]
        assert meta.total_jobs == 2

        by_source = {r.source: r for r in meta.source_results}
        assert by_source["alpha"].job_count == 2
        assert by_source["alpha"].error is None
        assert by_source["broken"].error == "boom"
        assert by_source["silent"].error == "ConnectionError"
        assert by_source["broken"].to_dict() == {
            "source": "broken",
            "job_count": 0,
            "query_time_ms": by_source["broken"].query_time_ms,
            "error": "boom",
        }

    async def test_unknown_name_counts_as_failed(self, registry):
        registry.register_adapter(StaticAdapter("alpha", jobs=[make_job()]))
        result = await registry.discover_from_sources(["alpha", "ghost"], criteria())
        assert result.metadata.failed_sources == ["ghost"]
        assert len(result.jobs) == 1

    async def test_recovered_errors_become_warnings(self, registry):
        registry.register_adapter(PartialAdapter("partial", jobs=[make_job()]))
        result = await registry.discover_from_sources(["partial"], criteria())

        [source_result] = result.metadata.source_results
        assert source_result.error is None
        assert source_result.warnings == ["page 2 timed out"]
        assert result.metadata.failed_sources == []

    async def test_sources_run_concurrently(self, registry):
        go = asyncio.Event()
        # "slow" only finishes once "fast" has started
        slow = StaticAdapter("slow", jobs=[make_job()], wait_for=go)
        fast = StaticAdapter("fast", jobs=[make_job(external_id="src-2")], signal=go)
        registry.register_adapter(slow)
        registry.register_adapter(fast)

        result = await registry.discover_from_sources(["slow", "fast"], criteria())

        assert result.metadata.failed_sources == []
        assert result.metadata.total_jobs == 2

    async def test_all_sources_uses_active_only(self, registry, db):
        await add_source(db, "alpha")
        registry.register_adapter(StaticAdapter("alpha", jobs=[make_job()]))
        unlinked = StaticAdapter("beta", jobs=[make_job(external_id="src-2")])
        registry.register_adapter(unlinked)
        await registry.initialize()

        result = await registry.discover_from_all_sources(criteria())

        assert result.metadata.total_sources == 1
        assert [j.source_name for j in result.jobs] == ["alpha"]
        assert unlinked.calls == 0

    async def test_all_sources_with_none_active(self, registry):
        registry.register_adapter(StaticAdapter("alpha", jobs=[make_job()]))
        result = await registry.discover_from_all_sources(criteria())
        assert result.jobs == []
        assert result.metadata.total_sources == 0


class TestHealth:
    async def test_raising_check_is_unhealthy(self, registry):
        registry.register_adapter(StaticAdapter("alpha"))
        registry.register_adapter(StaticAdapter("down", healthy=False))
        registry.register_adapter(StaticAdapter("crash", health_error=RuntimeError("probe exploded")))

        health = await registry.health_check_all()

        assert health["alpha"].healthy
        assert not health["down"].healthy
        assert not health["crash"].healthy
        assert health["crash"].message == "probe exploded"

    async def test_source_statuses(self, registry):
        adapter = StaticAdapter("alpha")
        registry.register_adapter(adapter)
        await registry.ensure_source_exists(adapter)

        [status] = await registry.source_statuses()

        assert status.name == "alpha"
        assert status.display_name == "Alpha"
        assert status.type == "API"
        assert status.healthy
        assert status.source_id == adapter.get_source_id()


async def test_close_closes_every_adapter(session_factory):
    registry = AdapterRegistry(session_factory)
    adapters = [StaticAdapter("alpha"), StaticAdapter("beta")]
    for adapter in adapters:
        registry.register_adapter(adapter)

    await registry.close()
    assert all(a.closed for a in adapters)
