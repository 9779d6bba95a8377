"""Tests for ProviderClient retry, throttling and failure classification."""

import asyncio
from datetime import datetime, timedelta

import httpx
import pytest

from judgeindex.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from judgeindex.services.client import parse_retry_after
from judgeindex.services.errors import (
    PermanentRequestError,
    ProviderUnavailableError,
    RateLimitedError,
    TransientNetworkError,
)
from judgeindex.services.rate_limiter import MemoryRateLimitBackend, RateLimiter
from tests.conftest import make_client


class TestRequest:
    async def test_success_returns_json(self):
        client = make_client(lambda request: httpx.Response(200, json={"results": []}))

        result = await client.request("/courts/")

        assert result.data == {"results": []}
        assert result.status_code == 200
        assert result.attempts == 1

    async def test_429_blocks_limiter_for_retry_after(self):
        limiter = RateLimiter("courtlistener", MemoryRateLimitBackend())
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(429, headers={"Retry-After": "120"})

        client = make_client(handler, limiter=limiter)

        with pytest.raises(RateLimitedError) as exc_info:
            await client.request("/people/")
        assert exc_info.value.retry_after == 120

        # The limiter refuses locally without touching the network
        with pytest.raises(RateLimitedError) as exc_info:
            await client.request("/people/")
        assert calls == 1
        assert 100 < exc_info.value.retry_after <= 120

    async def test_429_is_not_a_circuit_failure(self):
        breaker = CircuitBreaker("courtlistener", CircuitBreakerConfig(failure_threshold=1))
        client = make_client(lambda request: httpx.Response(429), breaker=breaker)

        with pytest.raises(RateLimitedError):
            await client.request("/people/")

        assert breaker.state == CircuitState.CLOSED

    async def test_4xx_is_not_retried(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(404, text="Not found")

        sleeps: list[float] = []
        client = make_client(handler, sleeps=sleeps)

        with pytest.raises(PermanentRequestError) as exc_info:
            await client.request("/people/999/")

        assert exc_info.value.status_code == 404
        assert calls == 1
        assert sleeps == []

    async def test_5xx_is_retried_then_succeeds(self):
        responses = iter(
            [
                httpx.Response(503),
                httpx.Response(502),
                httpx.Response(200, json={"ok": True}),
            ]
        )
        sleeps: list[float] = []
        client = make_client(lambda request: next(responses), sleeps=sleeps)

        result = await client.request("/courts/")

        assert result.data == {"ok": True}
        assert result.attempts == 3
        assert len(sleeps) == 2

    async def test_5xx_retry_after_is_honoured(self):
        responses = iter(
            [
                httpx.Response(503, headers={"Retry-After": "7"}),
                httpx.Response(200, json={}),
            ]
        )
        sleeps: list[float] = []
        client = make_client(lambda request: next(responses), sleeps=sleeps)

        await client.request("/courts/")

        assert sleeps == [7.0]

    async def test_retries_are_capped(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        client = make_client(handler, max_retries=3)

        with pytest.raises(TransientNetworkError):
            await client.request("/courts/")
        assert calls == 3

    async def test_network_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler, max_retries=2)

        with pytest.raises(TransientNetworkError):
            await client.request("/courts/")

    async def test_open_circuit_fails_fast(self):
        breaker = CircuitBreaker("courtlistener", CircuitBreakerConfig(failure_threshold=2))
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        client = make_client(handler, breaker=breaker, max_retries=2)
        with pytest.raises(TransientNetworkError):
            await client.request("/courts/")
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(ProviderUnavailableError):
            await client.request("/courts/")
        assert calls == 2

    async def test_refused_half_open_call_spends_no_slot(self):
        clock = [datetime(2026, 1, 1, 12, 0, 0)]
        breaker = CircuitBreaker(
            "courtlistener", CircuitBreakerConfig(failure_threshold=1), clock=lambda: clock[0]
        )
        limiter = RateLimiter("courtlistener", MemoryRateLimitBackend())
        release = asyncio.Event()
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                return httpx.Response(500)
            await release.wait()
            return httpx.Response(200, json={})

        client = make_client(handler, limiter=limiter, breaker=breaker, max_retries=1)
        with pytest.raises(TransientNetworkError):
            await client.request("/courts/")
        clock[0] += timedelta(seconds=61)

        recovery = asyncio.create_task(client.request("/courts/"))
        for _ in range(100):
            if calls == 2:
                break
            await asyncio.sleep(0.01)

        with pytest.raises(ProviderUnavailableError):
            await client.request("/courts/")
        assert (await limiter.get_usage_stats())["total_requests"] == 2

        release.set()
        assert (await recovery).status_code == 200
        assert breaker.state == CircuitState.CLOSED

    async def test_refused_slot_makes_no_request(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json={})

        limiter = RateLimiter("courtlistener", MemoryRateLimitBackend(limit=1, buffer_limit=1))
        client = make_client(handler, limiter=limiter)

        await client.request("/courts/")
        with pytest.raises(RateLimitedError):
            await client.request("/courts/")
        assert calls == 1


class TestParseRetryAfter:
    def test_seconds_header(self):
        assert parse_retry_after(httpx.Response(429, headers={"Retry-After": "30"})) == 30.0

    def test_throttle_detail_body(self):
        response = httpx.Response(
            429, json={"detail": "Request was throttled. Expected available in 42 seconds."}
        )
        assert parse_retry_after(response) == 42.0

    def test_missing(self):
        assert parse_retry_after(httpx.Response(429, text="slow down")) is None
