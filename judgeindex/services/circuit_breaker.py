"""
CircuitBreaker - Stops calling the provider while it is failing.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Provider is failing, requests are blocked
- HALF_OPEN: Exactly one probe request tests recovery

Transitions:
- CLOSED → OPEN: After failure_threshold consecutive failures
- OPEN → HALF_OPEN: After the cooldown expires
- HALF_OPEN → CLOSED: Probe succeeded
- HALF_OPEN → OPEN: Probe failed, cooldown doubled up to max_cooldown

State is per provider, never per entity, so an outage is detected once for
the whole sync subsystem.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from judgeindex.services.errors import ProviderUnavailableError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Consecutive failures before opening
    cooldown: timedelta = timedelta(seconds=60)  # Time before half-open
    max_cooldown: timedelta = timedelta(minutes=15)
    backoff_multiplier: float = 2.0


class CircuitBreaker:
    """
    Circuit breaker for a single provider.

    Usage:
        cb = CircuitBreaker("courtlistener")

        result = await cb.execute(
            lambda: client.get(url),
            is_failure=lambda exc: isinstance(exc, TransientNetworkError),
        )
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: datetime | None = None
        self._opened_at: datetime | None = None
        self._cooldown = self.config.cooldown
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        """Get current state, checking for automatic transitions."""
        if self._state == CircuitState.OPEN:
            if self._opened_at and self._clock() >= self._opened_at + self._cooldown:
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = False
                logger.info(
                    f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN"
                )
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    async def _before_call(self) -> None:
        """Admit the call or raise ProviderUnavailableError."""
        async with self._lock:
            current_state = self.state

            if current_state == CircuitState.OPEN:
                raise ProviderUnavailableError(
                    self.service_id, self.get_time_until_reset() or 0
                )

            if current_state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise ProviderUnavailableError(self.service_id, 0)
                self._probe_in_flight = True

    def would_admit(self) -> bool:
        """Whether a call made now would be let through, without claiming the probe."""
        current_state = self.state
        if current_state == CircuitState.OPEN:
            return False
        return not (current_state == CircuitState.HALF_OPEN and self._probe_in_flight)

    async def execute(
        self,
        call: Callable[[], Awaitable[T]],
        is_failure: Callable[[BaseException], bool] = lambda exc: True,
    ) -> T:
        """Run ``call`` through the breaker.

        Raises ProviderUnavailableError without invoking ``call`` while open.
        Exceptions for which ``is_failure`` is False still propagate but count
        as a healthy answer from the provider (a 404 is not an outage).
        """
        await self._before_call()

        try:
            result = await call()
        except Exception as exc:
            async with self._lock:
                if is_failure(exc):
                    self.record_failure()
                else:
                    self.record_success()
            raise
        except BaseException:
            # Cancelled mid-probe: no verdict either way
            async with self._lock:
                self._release_probe()
            raise

        async with self._lock:
            self.record_success()
        return result

    def _release_probe(self) -> None:
        """A probe that ended without a verdict frees the half-open slot."""
        if self._state == CircuitState.HALF_OPEN:
            self._probe_in_flight = False

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state == CircuitState.HALF_OPEN:
            self._close()
        elif self._state == CircuitState.CLOSED:
            self._consecutive_failures = 0

    def record_failure(self) -> None:
        """Record a failed request."""
        self._consecutive_failures += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit with a longer cooldown
            grown = self._cooldown * self.config.backoff_multiplier
            self._cooldown = min(grown, self.config.max_cooldown)
            self._open()
        elif self._state == CircuitState.CLOSED:
            if self._consecutive_failures >= self.config.failure_threshold:
                self._open()

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._probe_in_flight = False
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after "
            f"{self._consecutive_failures} failures "
            f"(cooldown {self._cooldown.total_seconds():.0f}s)"
        )

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None
        self._probe_in_flight = False
        self._cooldown = self.config.cooldown
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None
        self._probe_in_flight = False
        self._last_failure_time = None
        self._cooldown = self.config.cooldown
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit transitions to half-open."""
        if self._state != CircuitState.OPEN or not self._opened_at:
            return None

        reset_at = self._opened_at + self._cooldown
        remaining = (reset_at - self._clock()).total_seconds()
        return max(0, remaining)

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "consecutive_failures": self._consecutive_failures,
            "last_failure": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "opened_at": (self._opened_at.isoformat() if self._opened_at else None),
            "cooldown_seconds": self._cooldown.total_seconds(),
            "time_until_reset": self.get_time_until_reset(),
        }
