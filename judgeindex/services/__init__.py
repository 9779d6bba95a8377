"""
Service layer infrastructure - resilience patterns for provider calls.

Provides:
- RateLimiter: Shared hourly request budget
- CircuitBreaker: Stops calling a failing provider
- RequestDeduplicator: Single-flight execution per key
- ProviderClient: HTTP client combining all of the above with retry

The analytics cache and service live in services.cache and services.analytics.
"""

from judgeindex.services.errors import (
    ServiceError,
    CacheError,
    DurableStoreError,
    ProviderUnavailableError,
    TransientNetworkError,
    RequestTimeoutError,
    PermanentRequestError,
    RateLimitedError,
    AugmentationError,
    SyncInProgressError,
)
from judgeindex.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from judgeindex.services.rate_limiter import (
    MemoryRateLimitBackend,
    RateLimiter,
    SqlRateLimitBackend,
)
from judgeindex.services.deduplicator import RequestDeduplicator
from judgeindex.services.client import ProviderClient, RequestResult

__all__ = [
    # Errors
    "ServiceError",
    "CacheError",
    "DurableStoreError",
    "ProviderUnavailableError",
    "TransientNetworkError",
    "RequestTimeoutError",
    "PermanentRequestError",
    "RateLimitedError",
    "AugmentationError",
    "SyncInProgressError",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Rate Limiter
    "MemoryRateLimitBackend",
    "RateLimiter",
    "SqlRateLimitBackend",
    # Deduplicator
    "RequestDeduplicator",
    # Client
    "ProviderClient",
    "RequestResult",
]
