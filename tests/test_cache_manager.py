"""Tests for the three-tier analytics cache."""

import asyncio
import json
from datetime import datetime, timedelta

import pytest

from judgeindex.analysis.types import AnalysisQuality, AnalyticsRecord, MetricResult
from judgeindex.datastore.repositories import CourtAnalyticsSummaryRepository
from judgeindex.services.cache import CacheManager, DurableTier, MemoryTier
from judgeindex.services.errors import DurableStoreError
from tests.conftest import seed_judge


def make_record(
    judge_id: str = "1001",
    generated_at: datetime | None = None,
    civil: float | None = 60.0,
    total: int = 120,
) -> AnalyticsRecord:
    return AnalyticsRecord(
        judge_id=judge_id,
        metrics={
            "civil_plaintiff_favor": MetricResult(
                value=civil, confidence=80.0, sample_size=40, suppressed=False
            ),
            "bail_release_rate": MetricResult(value=90.0, confidence=20.0, sample_size=5),
        },
        overall_confidence=50.0,
        total_cases_analyzed=total,
        analysis_quality=AnalysisQuality.PRELIMINARY,
        generated_at=generated_at or datetime.utcnow(),
    )


class BrokenTier:
    def __init__(self, name: str):
        self.name = name

    async def get(self, judge_id):
        raise ConnectionError(f"{self.name} down")

    async def put(self, record):
        raise ConnectionError(f"{self.name} down")

    async def delete(self, judge_id):
        raise ConnectionError(f"{self.name} down")


class BrokenDurableTier(DurableTier):
    async def put(self, record):
        raise ConnectionError("database is locked")


class HeldDurableTier(DurableTier):
    """Returns its read result only after ``release`` is set, once."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.hold_next = False
        self.holding = asyncio.Event()
        self.release = asyncio.Event()

    async def get(self, judge_id):
        record = await super().get(judge_id)
        if self.hold_next:
            self.hold_next = False
            self.holding.set()
            await self.release.wait()
        return record


@pytest.fixture
def cache(session_factory) -> CacheManager:
    return CacheManager(session_factory)


class TestReadPath:
    async def test_miss(self, cache):
        assert await cache.get("1001") is None
        assert cache.get_stats().misses == 1

    async def test_put_then_memory_hit(self, cache):
        await cache.put(make_record())

        lookup = await cache.get("1001")

        assert lookup.source == "memory"
        assert not lookup.is_stale
        assert lookup.record.metrics["civil_plaintiff_favor"].value == 60.0

    async def test_durable_hit_is_promoted(self, cache):
        await cache.put(make_record())
        await cache.memory.clear()
        await cache.distributed.delete("1001")

        lookup = await cache.get("1001")
        assert lookup.source == "durable"

        assert await cache.distributed.get("1001") is not None
        assert (await cache.get("1001")).source == "memory"

    async def test_distributed_hit_is_promoted(self, cache):
        await cache.put(make_record())
        await cache.memory.clear()

        assert (await cache.get("1001")).source == "distributed"
        assert (await cache.get("1001")).source == "memory"

    async def test_stale_record_is_served_and_queued(self, cache):
        await cache.put(make_record(generated_at=datetime.utcnow() - timedelta(days=8)))

        lookup = await cache.get("1001")

        assert lookup.is_stale
        assert lookup.record.judge_id == "1001"
        assert cache.pending_refreshes() == ["1001"]
        assert cache.get_stats().stale_hits == 1

    async def test_memory_entries_expire(self):
        now = [datetime.utcnow()]
        memory = MemoryTier(ttl=timedelta(minutes=15), clock=lambda: now[0])
        await memory.put(make_record())

        now[0] += timedelta(minutes=16)

        assert await memory.get("1001") is None

    async def test_memory_lru_eviction(self):
        memory = MemoryTier(max_size=2)
        for judge_id in ("a", "b", "c"):
            await memory.put(make_record(judge_id))

        assert await memory.get("a") is None
        assert len(memory) == 2
        assert memory.evictions == 1

    async def test_broken_cache_tiers_fall_through(self, session_factory):
        cache = CacheManager(
            session_factory, memory=BrokenTier("memory"), distributed=BrokenTier("distributed")
        )

        await cache.put(make_record())
        lookup = await cache.get("1001")

        assert lookup.source == "durable"
        assert cache.get_stats().tier_errors >= 4


class TestWritePath:
    async def test_durable_failure_raises(self, session_factory):
        cache = CacheManager(session_factory, durable=BrokenDurableTier(session_factory))

        with pytest.raises(DurableStoreError):
            await cache.put(make_record())

        # Nothing was written to the faster tiers
        assert await cache.memory.get("1001") is None

    async def test_generated_at_strictly_increases(self, cache):
        fixed = datetime(2026, 3, 1, 12, 0, 0)
        first = await cache.put(make_record(generated_at=fixed))

        second = await cache.put(make_record(generated_at=fixed, civil=70.0))

        assert second.generated_at > first.generated_at
        stored = await cache.durable.get("1001")
        assert stored.metrics["civil_plaintiff_favor"].value == 70.0
        assert stored.generated_at == second.generated_at

    async def test_put_clears_pending_refresh(self, cache):
        await cache.put(make_record(generated_at=datetime.utcnow() - timedelta(days=30)))
        await cache.get("1001")
        assert cache.pending_refreshes() == ["1001"]

        await cache.put(make_record())

        assert cache.pending_refreshes() == []

    async def test_invalidate_removes_every_tier(self, cache):
        await cache.put(make_record())

        await cache.invalidate("1001")

        assert await cache.get("1001") is None
        assert await cache.durable.get("1001") is None


class TestGeneration:
    async def test_concurrent_misses_generate_once(self, cache):
        calls = 0
        release = asyncio.Event()

        async def generate(judge_id: str) -> AnalyticsRecord:
            nonlocal calls
            calls += 1
            await release.wait()
            return make_record(judge_id)

        tasks = [asyncio.create_task(cache.get_or_generate("1001", generate)) for _ in range(4)]
        for _ in range(200):
            if cache.get_status()["single_flight"]["deduplicated"] == 3:
                break
            await asyncio.sleep(0.01)
        assert cache.is_generating("1001")
        release.set()
        lookups = await asyncio.gather(*tasks)

        assert calls == 1
        assert {lookup.source for lookup in lookups} == {"generated"}
        assert (await cache.get("1001")).source == "memory"

    async def test_late_miss_reuses_record_stored_meanwhile(self, session_factory):
        durable = HeldDurableTier(session_factory)
        cache = CacheManager(session_factory, durable=durable)
        calls = 0

        async def generate(judge_id: str) -> AnalyticsRecord:
            nonlocal calls
            calls += 1
            return make_record(judge_id)

        durable.hold_next = True
        late = asyncio.create_task(cache.get_or_generate("1001", generate))
        await asyncio.wait_for(durable.holding.wait(), timeout=2)

        first = await cache.get_or_generate("1001", generate)
        durable.release.set()
        second = await late

        assert calls == 1
        assert first.source == "generated"
        assert second.source == "durable"
        assert second.record.generated_at == first.record.generated_at

    async def test_cached_record_skips_generation(self, cache):
        await cache.put(make_record())

        async def generate(judge_id: str) -> AnalyticsRecord:
            raise AssertionError("should not generate")

        assert (await cache.get_or_generate("1001", generate)).source == "memory"

    async def test_force_refresh_regenerates(self, cache):
        await cache.put(make_record(civil=10.0))

        async def generate(judge_id: str) -> AnalyticsRecord:
            return make_record(judge_id, civil=99.0)

        lookup = await cache.get_or_generate("1001", generate, force_refresh=True)

        assert lookup.source == "generated"
        assert (await cache.get("1001")).record.metrics["civil_plaintiff_favor"].value == 99.0

    async def test_failed_refresh_keeps_previous_record(self, cache):
        await cache.put(make_record(civil=10.0))

        async def generate(judge_id: str) -> AnalyticsRecord:
            raise RuntimeError("engine down")

        with pytest.raises(RuntimeError):
            await cache.get_or_generate("1001", generate, force_refresh=True)

        assert (await cache.durable.get("1001")).metrics["civil_plaintiff_favor"].value == 10.0

    async def test_enqueue_and_take_stale(self, cache):
        old = datetime.utcnow() - timedelta(days=10)
        await cache.put(make_record("a", generated_at=old - timedelta(days=1)))
        await cache.put(make_record("b", generated_at=old))
        await cache.put(make_record("c"))

        assert await cache.enqueue_stale() == 2
        assert cache.take_refreshes(limit=1) == ["a"]
        assert cache.take_refreshes() == ["b"]
        assert cache.take_refreshes() == []


class TestAggregateViews:
    async def test_summaries_per_court(self, session_factory, cache):
        await seed_judge(session_factory, "1001", court_id="cal")
        await seed_judge(session_factory, "1002", court_id="cal")
        await seed_judge(session_factory, "2001", court_id="nysd", court_name="S.D.N.Y.")
        await cache.put(make_record("1001", civil=60.0))
        await cache.put(make_record("1002", civil=40.0))
        await cache.put(make_record("2001", total=0))

        courts = await cache.refresh_aggregate_views()

        assert courts == 1
        async with session_factory() as session:
            summary = await CourtAnalyticsSummaryRepository(session).get("cal")
            assert await CourtAnalyticsSummaryRepository(session).get("nysd") is None
        assert summary.judges_with_analytics == 2
        assert summary.total_cases_analyzed == 240
        averages = json.loads(summary.metric_averages_json)
        assert averages == {"civil_plaintiff_favor": 50.0}
