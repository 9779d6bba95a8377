"""
Service layer exceptions.

Provider failures are split by how callers must react to them:

- RateLimitedError: back off for ``retry_after`` seconds, not a correctness failure
- ProviderUnavailableError: circuit is open, the whole provider is degraded
- TransientNetworkError: retryable (5xx, timeouts, connection errors)
- PermanentRequestError: 4xx other than 429, never retried
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CacheError(ServiceError):
    """Cache operation failed."""

    pass


class DurableStoreError(CacheError):
    """Write to the durable analytics store failed."""

    pass


class ProviderUnavailableError(ServiceError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class TransientNetworkError(ServiceError):
    """Retryable failure: server error, timeout or connection problem."""

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message, service_id=service_id)


class RequestTimeoutError(TransientNetworkError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class PermanentRequestError(ServiceError):
    """Request rejected by the provider (4xx other than 429)."""

    def __init__(self, service_id: str, status_code: int, detail: str = ""):
        self.status_code = status_code
        super().__init__(
            f"HTTP {status_code} from service '{service_id}': {detail[:200]}",
            service_id=service_id,
        )


class RateLimitedError(ServiceError):
    """Rate limit exceeded."""

    def __init__(self, service_id: str, retry_after: float | None = None):
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for service '{service_id}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg, service_id=service_id)


class AugmentationError(ServiceError):
    """Generative model augmentation failed."""

    pass


class SyncInProgressError(ServiceError):
    """A sync run is already active in this process."""

    pass
