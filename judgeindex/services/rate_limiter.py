"""
RateLimiter - Global hourly request budget for the judicial data provider.

One RateLimiter instance is created per process and shared by reference with
every component that calls the provider. The counter itself lives in a
backend:

- MemoryRateLimitBackend: asyncio.Lock guarded counter, single process only
- SqlRateLimitBackend: row in ``provider_rate_limits``, shared by all workers;
  each slot is taken with one conditional UPDATE so concurrent workers never
  over-acquire or lose increments

acquire() never queues. It answers immediately; backoff belongs to callers.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from judgeindex.datastore.repositories import RateLimitRepository

WINDOW_DURATION = timedelta(hours=1)
HOURLY_LIMIT = 5000
BUFFER_LIMIT = 4500
WARNING_RATIO = 0.8


@dataclass
class RateLimitSnapshot:
    """Backend state after an operation."""

    window_start: datetime
    request_count: int
    limit: int
    buffer_limit: int
    blocked_until: datetime | None = None
    last_request_at: datetime | None = None


@dataclass
class RateLimitDecision:
    """Result of acquire()."""

    allowed: bool
    remaining: int
    reset_at: datetime
    current_count: int
    retry_after: float | None = None

    @property
    def utilization_percent(self) -> float:
        total = self.current_count + self.remaining
        if total == 0:
            return 100.0
        return self.current_count / total * 100


class RateLimitBackend(Protocol):
    """Storage for the shared counter."""

    async def try_acquire(self, now: datetime) -> tuple[bool, RateLimitSnapshot]: ...

    async def snapshot(self, now: datetime) -> RateLimitSnapshot: ...

    async def block_until(self, until: datetime) -> None: ...

    async def reset(self, now: datetime) -> None: ...


class MemoryRateLimitBackend:
    """In-process counter."""

    def __init__(self, limit: int = HOURLY_LIMIT, buffer_limit: int = BUFFER_LIMIT):
        self._state = RateLimitSnapshot(
            window_start=datetime.utcnow(),
            request_count=0,
            limit=limit,
            buffer_limit=buffer_limit,
        )
        self._lock = asyncio.Lock()

    def _roll(self, now: datetime) -> None:
        if now - self._state.window_start >= WINDOW_DURATION:
            self._state.window_start = now
            self._state.request_count = 0

    def _copy(self) -> RateLimitSnapshot:
        return RateLimitSnapshot(**vars(self._state))

    async def try_acquire(self, now: datetime) -> tuple[bool, RateLimitSnapshot]:
        async with self._lock:
            self._roll(now)
            state = self._state
            blocked = state.blocked_until is not None and state.blocked_until > now
            if blocked or state.request_count >= state.buffer_limit:
                return False, self._copy()
            state.request_count += 1
            state.last_request_at = now
            return True, self._copy()

    async def snapshot(self, now: datetime) -> RateLimitSnapshot:
        async with self._lock:
            self._roll(now)
            return self._copy()

    async def block_until(self, until: datetime) -> None:
        async with self._lock:
            current = self._state.blocked_until
            if current is None or current < until:
                self._state.blocked_until = until

    async def reset(self, now: datetime) -> None:
        async with self._lock:
            self._state.window_start = now
            self._state.request_count = 0
            self._state.blocked_until = None


class SqlRateLimitBackend:
    """Counter stored in the database and shared by every worker process."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: str,
        limit: int = HOURLY_LIMIT,
        buffer_limit: int = BUFFER_LIMIT,
    ):
        self._session_factory = session_factory
        self._provider = provider
        self._limit = limit
        self._buffer_limit = buffer_limit
        self._initialized = False

    async def _ensure_row(self, now: datetime) -> None:
        if self._initialized:
            return
        try:
            async with self._session_factory.begin() as session:
                repo = RateLimitRepository(session)
                if await repo.get(self._provider) is None:
                    await repo.create(self._provider, self._limit, self._buffer_limit, now)
        except IntegrityError:
            # Another worker created it first
            pass
        self._initialized = True

    @staticmethod
    def _to_snapshot(row: Any) -> RateLimitSnapshot:
        return RateLimitSnapshot(
            window_start=row.window_start,
            request_count=row.request_count,
            limit=row.limit,
            buffer_limit=row.buffer_limit,
            blocked_until=row.blocked_until,
            last_request_at=row.last_request_at,
        )

    async def try_acquire(self, now: datetime) -> tuple[bool, RateLimitSnapshot]:
        await self._ensure_row(now)
        async with self._session_factory.begin() as session:
            repo = RateLimitRepository(session)
            await repo.roll_window(self._provider, now, WINDOW_DURATION)
            allowed = await repo.try_increment(self._provider, now)
            row = await repo.get(self._provider)
            await session.refresh(row)
            return allowed, self._to_snapshot(row)

    async def snapshot(self, now: datetime) -> RateLimitSnapshot:
        await self._ensure_row(now)
        async with self._session_factory.begin() as session:
            repo = RateLimitRepository(session)
            await repo.roll_window(self._provider, now, WINDOW_DURATION)
            row = await repo.get(self._provider)
            await session.refresh(row)
            return self._to_snapshot(row)

    async def block_until(self, until: datetime) -> None:
        await self._ensure_row(datetime.utcnow())
        async with self._session_factory.begin() as session:
            await RateLimitRepository(session).block_until(self._provider, until)

    async def reset(self, now: datetime) -> None:
        await self._ensure_row(now)
        async with self._session_factory.begin() as session:
            await RateLimitRepository(session).reset(self._provider, now)


class RateLimiter:
    """
    Global rate limiter for one provider.

    Usage:
        limiter = RateLimiter("courtlistener", MemoryRateLimitBackend())

        decision = await limiter.acquire()
        if not decision.allowed:
            raise RateLimitedError("courtlistener", decision.retry_after)
    """

    def __init__(
        self,
        provider: str,
        backend: RateLimitBackend,
        warning_ratio: float = WARNING_RATIO,
    ):
        self.provider = provider
        self._backend = backend
        self._warning_ratio = warning_ratio
        self._warned_window: datetime | None = None

    def _decide(
        self, allowed: bool, snap: RateLimitSnapshot, now: datetime
    ) -> RateLimitDecision:
        reset_at = snap.window_start + WINDOW_DURATION
        remaining = max(0, snap.buffer_limit - snap.request_count)
        retry_after = None
        if not allowed:
            if snap.blocked_until is not None and snap.blocked_until > now:
                retry_after = (snap.blocked_until - now).total_seconds()
            else:
                retry_after = max(0.0, (reset_at - now).total_seconds())
        return RateLimitDecision(
            allowed=allowed,
            remaining=remaining,
            reset_at=reset_at,
            current_count=snap.request_count,
            retry_after=retry_after,
        )

    async def acquire(self) -> RateLimitDecision:
        """Take one request slot if the budget allows it."""
        now = datetime.utcnow()
        allowed, snap = await self._backend.try_acquire(now)
        decision = self._decide(allowed, snap, now)

        if not allowed:
            logger.warning(
                f"Rate limit for '{self.provider}' refused request "
                f"({decision.current_count}/{snap.buffer_limit}), "
                f"retry after {decision.retry_after:.0f}s"
            )
        elif (
            snap.request_count >= snap.buffer_limit * self._warning_ratio
            and self._warned_window != snap.window_start
        ):
            self._warned_window = snap.window_start
            logger.warning(
                f"Rate limit for '{self.provider}' at "
                f"{decision.utilization_percent:.1f}% of buffer "
                f"({snap.request_count}/{snap.buffer_limit})"
            )
        return decision

    async def block_for(self, seconds: float) -> None:
        """Refuse every acquire() for ``seconds`` (provider-imposed retry_after)."""
        until = datetime.utcnow() + timedelta(seconds=seconds)
        await self._backend.block_until(until)
        logger.warning(f"Provider '{self.provider}' blocked for {seconds:.0f}s")

    async def get_usage_stats(self) -> dict[str, Any]:
        """Current window usage for monitoring."""
        now = datetime.utcnow()
        snap = await self._backend.snapshot(now)
        window_end = snap.window_start + WINDOW_DURATION
        elapsed = max(1.0, (now - snap.window_start).total_seconds())
        projected = int(snap.request_count * WINDOW_DURATION.total_seconds() / elapsed)
        return {
            "provider": self.provider,
            "total_requests": snap.request_count,
            "limit": snap.limit,
            "buffer_limit": snap.buffer_limit,
            "remaining": max(0, snap.buffer_limit - snap.request_count),
            "utilization_percent": round(
                snap.request_count / snap.buffer_limit * 100 if snap.buffer_limit else 100.0,
                2,
            ),
            "window_start": snap.window_start.isoformat(),
            "window_end": window_end.isoformat(),
            "blocked_until": (
                snap.blocked_until.isoformat()
                if snap.blocked_until and snap.blocked_until > now
                else None
            ),
            "last_request": (
                snap.last_request_at.isoformat() if snap.last_request_at else None
            ),
            "projected_hourly": projected,
        }

    async def reset(self) -> None:
        """Reset the window and any block."""
        await self._backend.reset(datetime.utcnow())
        self._warned_window = None
        logger.info(f"Rate limiter for '{self.provider}' reset")
