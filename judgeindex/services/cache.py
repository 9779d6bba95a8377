"""
CacheManager - Three-tier analytics cache with stale-while-revalidate.

Tiers, fastest first:
- MemoryTier: per-process LRU with TTL (default 15 minutes)
- DistributedTier: database key/value table shared by all workers, TTL (default 24h)
- DurableTier: judge_analytics_cache, no TTL; the authoritative copy

Reads walk the tiers in order and promote a hit into the faster tiers. A record
older than the staleness window is still returned, flagged is_stale, and the
judge is queued for background refresh. Writes go to the durable tier first
(a failure raises DurableStoreError), then best-effort to the two cache tiers.
Errors in the memory or distributed tier are logged and treated as misses.

Generation on a miss is single-flight per judge through RequestDeduplicator.
"""

import asyncio
import json
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Protocol

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from judgeindex.analysis.types import AnalyticsRecord
from judgeindex.datastore.repositories import (
    AnalyticsCacheRepository,
    CacheEntryRepository,
    CourtAnalyticsSummaryRepository,
    JudgeRepository,
)
from judgeindex.services.deduplicator import RequestDeduplicator
from judgeindex.services.errors import CacheError, DurableStoreError

KEY_PREFIX = "judge_analytics:"


def cache_key(judge_id: str) -> str:
    return f"{KEY_PREFIX}{judge_id}"


@dataclass
class CacheEntry:
    """A single memory-tier entry."""

    record: AnalyticsRecord
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class CacheLookup:
    """Result from a cache lookup."""

    record: AnalyticsRecord
    source: str  # 'memory' | 'distributed' | 'durable' | 'generated'
    is_stale: bool


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    evictions: int = 0
    tier_errors: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.stale_hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits + self.stale_hits) / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "stale_hits": self.stale_hits,
            "evictions": self.evictions,
            "tier_errors": self.tier_errors,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class CacheTier(Protocol):
    name: str

    async def get(self, judge_id: str) -> AnalyticsRecord | None: ...

    async def put(self, record: AnalyticsRecord) -> AnalyticsRecord: ...

    async def delete(self, judge_id: str) -> None: ...


class MemoryTier:
    """Per-process LRU with TTL."""

    name = "memory"

    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=15),
        max_size: int = 1000,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.ttl = ttl
        self.max_size = max_size
        self.evictions = 0
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._clock = clock
        self._lock = asyncio.Lock()

    async def get(self, judge_id: str) -> AnalyticsRecord | None:
        async with self._lock:
            entry = self._entries.get(judge_id)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[judge_id]
                return None
            self._entries.move_to_end(judge_id)
            return entry.record

    async def put(self, record: AnalyticsRecord) -> AnalyticsRecord:
        async with self._lock:
            self._entries[record.judge_id] = CacheEntry(record, self._clock() + self.ttl)
            self._entries.move_to_end(record.judge_id)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
                self.evictions += 1
        return record

    async def delete(self, judge_id: str) -> None:
        async with self._lock:
            self._entries.pop(judge_id, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class DistributedTier:
    """Database key/value table with explicit expiry, shared across workers."""

    name = "distributed"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl: timedelta = timedelta(hours=24),
    ):
        self._session_factory = session_factory
        self.ttl = ttl

    async def get(self, judge_id: str) -> AnalyticsRecord | None:
        async with self._session_factory() as session:
            payload = await CacheEntryRepository(session).get(cache_key(judge_id))
        if payload is None:
            return None
        return AnalyticsRecord.model_validate_json(payload)

    async def put(self, record: AnalyticsRecord) -> AnalyticsRecord:
        async with self._session_factory.begin() as session:
            await CacheEntryRepository(session).set(
                cache_key(record.judge_id), record.model_dump_json(), self.ttl
            )
        return record

    async def delete(self, judge_id: str) -> None:
        async with self._session_factory.begin() as session:
            await CacheEntryRepository(session).delete(cache_key(judge_id))

    async def cleanup_expired(self) -> int:
        async with self._session_factory.begin() as session:
            return await CacheEntryRepository(session).cleanup_expired()


class DurableTier:
    """Authoritative per-judge record, no TTL."""

    name = "durable"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, judge_id: str) -> AnalyticsRecord | None:
        async with self._session_factory() as session:
            row = await AnalyticsCacheRepository(session).get(judge_id)
        if row is None:
            return None
        return AnalyticsRecord.model_validate_json(row.analytics_json)

    async def put(self, record: AnalyticsRecord) -> AnalyticsRecord:
        """Upsert; a regeneration always carries a later generated_at than the row it replaces."""
        async with self._session_factory.begin() as session:
            repo = AnalyticsCacheRepository(session)
            existing = await repo.get(record.judge_id)
            if existing is not None and record.generated_at <= existing.generated_at:
                record = record.model_copy(
                    update={"generated_at": existing.generated_at + timedelta(microseconds=1)}
                )
            await repo.upsert(
                record.judge_id,
                record.model_dump(mode="json"),
                generated_at=record.generated_at,
                total_cases_analyzed=record.total_cases_analyzed,
                analysis_quality=record.analysis_quality.value,
            )
        return record

    async def delete(self, judge_id: str) -> None:
        async with self._session_factory.begin() as session:
            await AnalyticsCacheRepository(session).delete(judge_id)

    async def list_older_than(self, cutoff: datetime, limit: int) -> list[str]:
        async with self._session_factory() as session:
            return await AnalyticsCacheRepository(session).list_older_than(cutoff, limit)


class CacheManager:
    """
    Usage:
        cache = CacheManager(get_session_factory())

        lookup = await cache.get_or_generate(judge_id, engine.generate)
        if lookup.is_stale:
            ...  # already queued for background refresh
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        memory_ttl: timedelta = timedelta(minutes=15),
        memory_max_size: int = 1000,
        distributed_ttl: timedelta = timedelta(hours=24),
        staleness: timedelta = timedelta(days=7),
        memory: CacheTier | None = None,
        distributed: CacheTier | None = None,
        durable: DurableTier | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        debug: bool = False,
    ):
        self._session_factory = session_factory
        self.memory = memory or MemoryTier(memory_ttl, memory_max_size)
        self.distributed = distributed or DistributedTier(session_factory, distributed_ttl)
        self.durable = durable or DurableTier(session_factory)
        self.staleness = staleness
        self._clock = clock
        self._debug = debug
        self._dedup = RequestDeduplicator(debug=debug)
        self._refresh_queue: dict[str, None] = {}
        self._stats = CacheStats(max_size=memory_max_size)

    # ── Read path ─────────────────────────────────────────────────────────────

    def is_stale(self, record: AnalyticsRecord) -> bool:
        return self._clock() - record.generated_at > self.staleness

    async def get(self, judge_id: str) -> CacheLookup | None:
        """Walk memory -> distributed -> durable, promoting hits into faster tiers."""
        record = await self._safe_get(self.memory, judge_id)
        source = self.memory.name
        if record is None:
            record = await self._safe_get(self.distributed, judge_id)
            source = self.distributed.name
            if record is not None:
                await self._safe_put(self.memory, record)
        if record is None:
            try:
                record = await self.durable.get(judge_id)
            except Exception as e:
                raise CacheError(f"Durable analytics read failed for {judge_id}: {e}") from e
            source = self.durable.name
            if record is not None:
                await self._safe_put(self.distributed, record)
                await self._safe_put(self.memory, record)

        if record is None:
            self._stats.misses += 1
            self._log(f"MISS: {judge_id}")
            return None

        stale = self.is_stale(record)
        if stale:
            self._stats.stale_hits += 1
            self._refresh_queue[judge_id] = None
            self._log(f"STALE HIT ({source}): {judge_id}, queued for refresh")
        else:
            self._stats.hits += 1
            self._log(f"HIT ({source}): {judge_id}")
        return CacheLookup(record=record, source=source, is_stale=stale)

    async def _safe_get(self, tier: CacheTier, judge_id: str) -> AnalyticsRecord | None:
        try:
            return await tier.get(judge_id)
        except Exception as e:
            self._stats.tier_errors += 1
            logger.warning(f"Cache tier '{tier.name}' read failed for {judge_id}: {e}")
            return None

    async def _safe_put(self, tier: CacheTier, record: AnalyticsRecord) -> None:
        try:
            await tier.put(record)
        except Exception as e:
            self._stats.tier_errors += 1
            logger.warning(f"Cache tier '{tier.name}' write failed for {record.judge_id}: {e}")

    # ── Write path ────────────────────────────────────────────────────────────

    async def put(self, record: AnalyticsRecord) -> AnalyticsRecord:
        """Store durably, then fill the cache tiers. Returns the stored record."""
        try:
            stored = await self.durable.put(record)
        except Exception as e:
            raise DurableStoreError(
                f"Failed to persist analytics for {record.judge_id}: {e}"
            ) from e
        await self._safe_put(self.distributed, stored)
        await self._safe_put(self.memory, stored)
        self._refresh_queue.pop(stored.judge_id, None)
        self._log(f"PUT: {stored.judge_id}")
        return stored

    async def evict(self, judge_id: str) -> None:
        """Drop the memory and distributed copies; the durable record stays."""
        for tier in (self.memory, self.distributed):
            try:
                await tier.delete(judge_id)
            except Exception as e:
                self._stats.tier_errors += 1
                logger.warning(f"Cache tier '{tier.name}' delete failed for {judge_id}: {e}")

    async def invalidate(self, judge_id: str) -> None:
        await self.evict(judge_id)
        try:
            await self.durable.delete(judge_id)
        except Exception as e:
            raise DurableStoreError(f"Failed to invalidate analytics for {judge_id}: {e}") from e
        self._log(f"INVALIDATE: {judge_id}")

    # ── Single-flight generation ──────────────────────────────────────────────

    async def get_or_generate(
        self,
        judge_id: str,
        generator: Callable[[str], Awaitable[AnalyticsRecord]],
        force_refresh: bool = False,
    ) -> CacheLookup:
        """Cached record, or one generation shared by every concurrent caller.

        ``force_refresh`` evicts the cached copies and regenerates; the durable
        record is only replaced once the new one is stored.
        """
        if force_refresh:
            await self.evict(judge_id)
        else:
            lookup = await self.get(judge_id)
            if lookup is not None:
                return lookup
        return await self.regenerate(judge_id, generator, reuse_stored=not force_refresh)

    async def regenerate(
        self,
        judge_id: str,
        generator: Callable[[str], Awaitable[AnalyticsRecord]],
        reuse_stored: bool = False,
    ) -> CacheLookup:
        """Generate and store under the single-flight guard.

        With ``reuse_stored`` a record stored by a generation that finished
        after the caller's miss is returned instead of generating again.
        """
        return await self._dedup.dedupe(
            cache_key(judge_id),
            lambda: self._generate_and_store(judge_id, generator, reuse_stored),
        )

    async def _generate_and_store(
        self,
        judge_id: str,
        generator: Callable[[str], Awaitable[AnalyticsRecord]],
        reuse_stored: bool = False,
    ) -> CacheLookup:
        if reuse_stored:
            try:
                existing = await self.durable.get(judge_id)
            except Exception as e:
                raise CacheError(f"Durable analytics read failed for {judge_id}: {e}") from e
            if existing is not None:
                self._log(f"GENERATE SKIPPED: {judge_id} was stored meanwhile")
                await self._safe_put(self.memory, existing)
                return CacheLookup(
                    record=existing, source=self.durable.name, is_stale=self.is_stale(existing)
                )

        record = await generator(judge_id)
        stored = await self.put(record)
        return CacheLookup(record=stored, source="generated", is_stale=False)

    def is_generating(self, judge_id: str) -> bool:
        return self._dedup.is_in_flight(cache_key(judge_id))

    # ── Background refresh ────────────────────────────────────────────────────

    def pending_refreshes(self) -> list[str]:
        return list(self._refresh_queue)

    def take_refreshes(self, limit: int | None = None) -> list[str]:
        """Remove and return up to ``limit`` queued judge ids, oldest first."""
        ids = list(self._refresh_queue)[:limit] if limit else list(self._refresh_queue)
        for judge_id in ids:
            self._refresh_queue.pop(judge_id, None)
        return ids

    async def enqueue_stale(self, limit: int = 50) -> int:
        """Queue durable records older than the staleness window."""
        cutoff = self._clock() - self.staleness
        judge_ids = await self.durable.list_older_than(cutoff, limit)
        for judge_id in judge_ids:
            self._refresh_queue[judge_id] = None
        return len(judge_ids)

    # ── Aggregate views ───────────────────────────────────────────────────────

    async def refresh_aggregate_views(self) -> int:
        """Rebuild per-court summaries from the durable records. Returns court count."""
        async with self._session_factory.begin() as session:
            judges_by_court = await JudgeRepository(session).list_by_court()
            court_of = {
                judge_id: court_id
                for court_id, judge_ids in judges_by_court.items()
                for judge_id in judge_ids
            }
            rows = await AnalyticsCacheRepository(session).list_all()

            grouped: dict[str, list[AnalyticsRecord]] = {}
            for row in rows:
                court_id = court_of.get(row.judge_id)
                if court_id is None or row.total_cases_analyzed == 0:
                    continue
                grouped.setdefault(court_id, []).append(
                    AnalyticsRecord.model_validate_json(row.analytics_json)
                )

            summaries = [
                self._summarize_court(court_id, records)
                for court_id, records in sorted(grouped.items())
            ]
            await CourtAnalyticsSummaryRepository(session).replace_all(summaries)

        logger.info(f"Refreshed analytics views for {len(summaries)} courts")
        return len(summaries)

    @staticmethod
    def _summarize_court(court_id: str, records: list[AnalyticsRecord]) -> dict[str, Any]:
        metric_values: dict[str, list[float]] = {}
        for record in records:
            for name, metric in record.metrics.items():
                if metric.value is not None and not metric.suppressed:
                    metric_values.setdefault(name, []).append(metric.value)
        averages = {
            name: round(sum(values) / len(values), 1) for name, values in metric_values.items()
        }
        return {
            "court_id": court_id,
            "judges_with_analytics": len(records),
            "total_cases_analyzed": sum(r.total_cases_analyzed for r in records),
            "avg_overall_confidence": round(
                sum(r.overall_confidence for r in records) / len(records), 1
            ),
            "metric_averages_json": json.dumps(averages, sort_keys=True),
        }

    # ── Stats ─────────────────────────────────────────────────────────────────

    def get_stats(self) -> CacheStats:
        if isinstance(self.memory, MemoryTier):
            self._stats.size = len(self.memory)
            self._stats.evictions = self.memory.evictions
        return self._stats

    def get_status(self) -> dict[str, Any]:
        return {
            **self.get_stats().to_dict(),
            "pending_refreshes": len(self._refresh_queue),
            "single_flight": self._dedup.get_stats().to_dict(),
        }

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CacheManager] {message}")
