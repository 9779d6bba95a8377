"""Shared pytest fixtures for all tests."""

from datetime import date, datetime
from typing import Any

import httpx
import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from judgeindex.datasource.courtlistener import CourtListenerSource
from judgeindex.datastore.engine import create_tables
from judgeindex.datastore.repositories import CaseRepository, JudgeRepository
from judgeindex.services.circuit_breaker import CircuitBreaker
from judgeindex.services.client import ProviderClient
from judgeindex.services.rate_limiter import MemoryRateLimitBackend, RateLimiter

BASE_URL = "https://provider.test/api/rest/v4"


@pytest.fixture(scope="function")
async def engine(tmp_path) -> AsyncEngine:
    """File-backed SQLite engine, fresh for each test function.

    A file database lets concurrent sessions use separate connections.
    """
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'judgeindex.db'}",
        echo=False,
        future=True,
    )
    await create_tables(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def make_client(
    handler,
    limiter: RateLimiter | None = None,
    breaker: CircuitBreaker | None = None,
    sleeps: list[float] | None = None,
    max_retries: int = 3,
) -> ProviderClient:
    """ProviderClient over httpx.MockTransport with a recording no-op sleep."""

    async def record_sleep(seconds: float) -> None:
        if sleeps is not None:
            sleeps.append(seconds)

    return ProviderClient(
        service_id="courtlistener",
        base_url=BASE_URL,
        rate_limiter=limiter or RateLimiter("courtlistener", MemoryRateLimitBackend()),
        circuit_breaker=breaker or CircuitBreaker("courtlistener"),
        max_retries=max_retries,
        min_interval=0,
        transport=httpx.MockTransport(handler),
        sleep=record_sleep,
    )


def page(results: list[dict[str, Any]], next_url: str | None = None) -> dict[str, Any]:
    return {"count": len(results), "next": next_url, "previous": None, "results": results}


class FakeProvider:
    """Routes MockTransport requests by path and records every call."""

    def __init__(self):
        self.routes: dict[str, Any] = {}
        self.calls: list[httpx.Request] = []

    def add(self, path: str, response: Any) -> None:
        self.routes[path] = response

    def paths(self) -> list[str]:
        return [request.url.path.replace("/api/rest/v4", "") for request in self.calls]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path.replace("/api/rest/v4", "")
        response = self.routes.get(path)
        if response is None:
            return httpx.Response(200, json=page([]))
        if callable(response):
            return response(request)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def source(provider: FakeProvider) -> CourtListenerSource:
    return CourtListenerSource(make_client(provider), api_key="test-key")


async def seed_judge(
    session_factory: async_sessionmaker[AsyncSession],
    judge_id: str = "1001",
    court_id: str = "cal",
    court_name: str = "Supreme Court of California",
    jurisdiction: str = "S",
) -> None:
    async with session_factory.begin() as session:
        await JudgeRepository(session).upsert(
            judge_id,
            name=f"Judge {judge_id}",
            court_id=court_id,
            court_name=court_name,
            jurisdiction=jurisdiction,
        )


async def seed_cases(
    session_factory: async_sessionmaker[AsyncSession],
    judge_id: str,
    cases: list[dict[str, Any]],
    filing_date: date | None = None,
) -> None:
    filing_date = filing_date or date(datetime.utcnow().year - 1, 6, 1)
    async with session_factory.begin() as session:
        repo = CaseRepository(session)
        for i, case in enumerate(cases):
            values = dict(case)
            await repo.upsert(
                f"opinion:{judge_id}-{i}",
                judge_id,
                source="opinion",
                filing_date=values.pop("filing_date", filing_date),
                **values,
            )
