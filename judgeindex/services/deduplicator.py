"""
RequestDeduplicator - Single-flight execution per key.

When multiple callers request the same key simultaneously, only one
computation runs and every caller receives its result (or its exception).
The shared task is shielded, so a caller that gives up does not cancel the
computation for the others.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Usage:
        dedup = RequestDeduplicator()

        record = await dedup.dedupe(
            key=f"analytics:{judge_id}",
            request_fn=lambda: engine.generate(judge_id),
        )
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._lock = asyncio.Lock()
        self._debug = debug
        self._stats = DeduplicatorStats()

    async def dedupe(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``request_fn`` unless a computation for ``key`` is already in flight."""
        async with self._lock:
            task = self._in_flight.get(key)
            if task is not None:
                self._stats.deduplicated += 1
                self._log(f"JOIN: {key}")
            else:
                self._stats.total += 1
                self._log(f"START: {key}")
                task = asyncio.create_task(self._execute_and_cleanup(key, request_fn))
                self._in_flight[key] = task

        return await asyncio.shield(task)

    async def _execute_and_cleanup(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await request_fn()
        finally:
            async with self._lock:
                self._in_flight.pop(key, None)
            self._log(f"DONE: {key}")

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def get_in_flight_count(self) -> int:
        return len(self._in_flight)

    def get_stats(self) -> "DeduplicatorStats":
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")


class DeduplicatorStats:
    """Statistics for request deduplication."""

    def __init__(self):
        self.total: int = 0  # Computations started
        self.deduplicated: int = 0  # Callers that joined one in flight
        self.in_flight: int = 0

    @property
    def dedup_rate(self) -> float:
        total = self.total + self.deduplicated
        if total == 0:
            return 0.0
        return self.deduplicated / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total,
            "deduplicated": self.deduplicated,
            "in_flight": self.in_flight,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }
