"""Tests for single-flight execution."""

import asyncio

import pytest

from judgeindex.services.deduplicator import RequestDeduplicator


class TestRequestDeduplicator:
    async def test_concurrent_callers_share_one_computation(self):
        dedup = RequestDeduplicator()
        calls = 0
        release = asyncio.Event()

        async def compute() -> str:
            nonlocal calls
            calls += 1
            await release.wait()
            return "record"

        waiters = [asyncio.create_task(dedup.dedupe("judge:1", compute)) for _ in range(5)]
        await asyncio.sleep(0)
        assert dedup.is_in_flight("judge:1")

        release.set()
        results = await asyncio.gather(*waiters)

        assert results == ["record"] * 5
        assert calls == 1
        assert dedup.get_in_flight_count() == 0
        stats = dedup.get_stats()
        assert stats.total == 1
        assert stats.deduplicated == 4

    async def test_every_waiter_sees_the_failure(self):
        dedup = RequestDeduplicator()
        release = asyncio.Event()

        async def compute() -> str:
            await release.wait()
            raise RuntimeError("boom")

        waiters = [asyncio.create_task(dedup.dedupe("judge:1", compute)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()

        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert not dedup.is_in_flight("judge:1")

    async def test_cancelled_caller_does_not_cancel_computation(self):
        dedup = RequestDeduplicator()
        release = asyncio.Event()

        async def compute() -> str:
            await release.wait()
            return "record"

        impatient = asyncio.create_task(dedup.dedupe("judge:1", compute))
        patient = asyncio.create_task(dedup.dedupe("judge:1", compute))
        await asyncio.sleep(0)

        impatient.cancel()
        with pytest.raises(asyncio.CancelledError):
            await impatient

        release.set()
        assert await patient == "record"

    async def test_sequential_calls_run_again(self):
        dedup = RequestDeduplicator()
        calls = 0

        async def compute() -> int:
            nonlocal calls
            calls += 1
            return calls

        assert await dedup.dedupe("judge:1", compute) == 1
        assert await dedup.dedupe("judge:1", compute) == 2
