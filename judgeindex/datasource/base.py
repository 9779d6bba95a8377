"""
Base data source interface.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from judgeindex.services.client import ProviderClient

T = TypeVar("T", bound=BaseModel)


class Page(BaseModel, Generic[T]):
    """One page of a cursor-paginated provider listing."""

    results: list[T] = Field(default_factory=list)
    count: int | None = None
    next: str | None = None
    previous: str | None = None

    @property
    def has_next(self) -> bool:
        return bool(self.next)


class BaseDataSource(ABC):
    """
    Abstract base class for provider data sources.

    All data sources should:
    - Use ProviderClient for HTTP requests (rate limit, circuit breaker, retry)
    - Return Pydantic models
    - Let provider errors propagate; callers decide how to contain them
    """

    def __init__(self, client: ProviderClient):
        self.client = client

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Unique identifier for this data source."""
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the data source is properly configured."""
        ...
