"""
ProviderClient - Async HTTP client for a rate-limited external provider.

Every request goes through, in order:
- RateLimiter: one slot per network attempt; refusal raises RateLimitedError
  before any I/O
- CircuitBreaker: fails fast with ProviderUnavailableError while open
- Pacing: a minimum interval between consecutive calls, whatever their outcome
- Retry: transient failures (5xx, timeout, connection) are retried with
  exponential backoff and full jitter; 4xx other than 429 never are
"""

import asyncio
import random
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Generic, TypeVar

import httpx
from loguru import logger

from judgeindex.services.circuit_breaker import CircuitBreaker
from judgeindex.services.errors import (
    PermanentRequestError,
    ProviderUnavailableError,
    RateLimitedError,
    RequestTimeoutError,
    ServiceError,
    TransientNetworkError,
)
from judgeindex.services.rate_limiter import RateLimiter

T = TypeVar("T")

DEFAULT_RETRY_AFTER = 60.0
LOW_REMAINING_WARNING = 100
_AVAILABLE_IN = re.compile(r"available in (\d+(?:\.\d+)?) seconds?")


@dataclass
class RequestResult(Generic[T]):
    """Result from a provider request."""

    data: T
    status_code: int
    attempts: int = 1
    service_id: str | None = None


def parse_retry_after(response: httpx.Response) -> float | None:
    """Seconds to wait, from the Retry-After header or a throttle payload."""
    header = response.headers.get("Retry-After")
    if header:
        header = header.strip()
        try:
            return max(0.0, float(header))
        except ValueError:
            pass
        try:
            when = parsedate_to_datetime(header)
        except (TypeError, ValueError):
            when = None
        if when is not None:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())

    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    if isinstance(body.get("retry_after"), (int, float)):
        return float(body["retry_after"])
    match = _AVAILABLE_IN.search(str(body.get("detail", "")))
    if match:
        return float(match.group(1))
    return None


def _is_provider_failure(exc: BaseException) -> bool:
    return isinstance(exc, TransientNetworkError)


class ProviderClient:
    """
    HTTP client for one provider, shared by every sync job in the process.

    Usage:
        client = ProviderClient(
            service_id="courtlistener",
            base_url="https://www.courtlistener.com/api/rest/v4",
            rate_limiter=limiter,
            circuit_breaker=CircuitBreaker("courtlistener"),
            headers={"Authorization": f"Token {api_key}"},
        )
        result = await client.request("/courts/", params={"jurisdiction": "S"})
    """

    def __init__(
        self,
        service_id: str,
        base_url: str,
        rate_limiter: RateLimiter,
        circuit_breaker: CircuitBreaker,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        min_interval: float = 0.3,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.service_id = service_id
        self.base_url = base_url.rstrip("/")
        self._rate_limiter = rate_limiter
        self._circuit_breaker = circuit_breaker
        self._headers = headers or {}
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff_base = backoff_base
        self._backoff_cap = backoff_cap
        self._min_interval = min_interval
        self._transport = transport
        self._sleep = sleep

        self._pace_lock = asyncio.Lock()
        self._last_call: float | None = None

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    def _backoff_delay(self, attempt: int) -> float:
        """Full jitter: uniform in [0, min(cap, base * 2**attempt)]."""
        ceiling = min(self._backoff_cap, self._backoff_base * (2**attempt))
        return random.uniform(0, ceiling)

    async def _pace(self) -> None:
        """Keep at least min_interval between consecutive calls."""
        async with self._pace_lock:
            if self._last_call is not None:
                wait = self._min_interval - (time.monotonic() - self._last_call)
                if wait > 0:
                    await self._sleep(wait)
            self._last_call = time.monotonic()

    async def request(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        method: str = "GET",
    ) -> RequestResult[dict[str, Any]]:
        """
        Make a provider request with rate limiting, circuit breaking and retry.

        Args:
            path: Path relative to base_url, or an absolute URL (pagination cursors)
            params: Query parameters
            method: HTTP method

        Returns:
            RequestResult with the decoded JSON body

        Raises:
            RateLimitedError: Budget exhausted locally or HTTP 429 from the provider
            ProviderUnavailableError: Circuit breaker is open
            PermanentRequestError: 4xx other than 429
            TransientNetworkError: Retries exhausted
        """
        attempt = 0
        while True:
            attempt += 1

            # No limiter slot is spent on a call the breaker would refuse
            if not self._circuit_breaker.would_admit():
                raise ProviderUnavailableError(
                    self.service_id, self._circuit_breaker.get_time_until_reset() or 0
                )

            decision = await self._rate_limiter.acquire()
            if not decision.allowed:
                raise RateLimitedError(self.service_id, decision.retry_after)

            try:
                data, status_code = await self._circuit_breaker.execute(
                    lambda: self._execute_request(path, params, method),
                    is_failure=_is_provider_failure,
                )
                return RequestResult(
                    data=data,
                    status_code=status_code,
                    attempts=attempt,
                    service_id=self.service_id,
                )

            except TransientNetworkError as e:
                if attempt >= self._max_retries:
                    logger.error(
                        f"Request to {self.service_id} {path} failed after "
                        f"{attempt} attempts: {e}"
                    )
                    raise
                delay = (
                    e.retry_after
                    if e.retry_after is not None
                    else self._backoff_delay(attempt - 1)
                )
                logger.warning(
                    f"Transient failure from {self.service_id} {path} "
                    f"(attempt {attempt}/{self._max_retries}), retrying in {delay:.1f}s: {e}"
                )
                await self._sleep(delay)

    async def _execute_request(
        self,
        path: str,
        params: dict[str, Any] | None,
        method: str,
    ) -> tuple[dict[str, Any], int]:
        """Execute the actual HTTP request and classify the outcome."""
        await self._pace()
        client = await self._get_http_client()

        try:
            response = await client.request(method=method, url=path, params=params)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.service_id, self._timeout) from e
        except httpx.RequestError as e:
            raise TransientNetworkError(str(e), service_id=self.service_id) from e

        self._log_quota_headers(response)
        status_code = response.status_code

        if status_code == 429:
            retry_after = parse_retry_after(response)
            wait = retry_after if retry_after is not None else DEFAULT_RETRY_AFTER
            await self._rate_limiter.block_for(wait)
            raise RateLimitedError(self.service_id, wait)

        if status_code >= 500:
            raise TransientNetworkError(
                f"HTTP {status_code}: {response.text[:200]}",
                service_id=self.service_id,
                status_code=status_code,
                retry_after=parse_retry_after(response),
            )

        if status_code >= 400:
            raise PermanentRequestError(self.service_id, status_code, response.text)

        try:
            return response.json(), status_code
        except ValueError as e:
            raise ServiceError(
                f"Invalid JSON from {self.service_id} {path}: {e}",
                service_id=self.service_id,
            ) from e

    def _log_quota_headers(self, response: httpx.Response) -> None:
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is None:
            return
        try:
            value = int(remaining)
        except ValueError:
            return
        if value < LOW_REMAINING_WARNING:
            logger.warning(
                f"{self.service_id} reports only {value} requests remaining "
                f"(limit {response.headers.get('X-RateLimit-Limit', '?')})"
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug(f"ProviderClient '{self.service_id}' closed")

    async def __aenter__(self) -> "ProviderClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def get_health_status(self) -> dict[str, Any]:
        """Circuit breaker and rate limit status."""
        return {
            "circuit_breaker": self._circuit_breaker.get_status(),
            "rate_limit": await self._rate_limiter.get_usage_stats(),
        }
