"""
CourtListener API data source: courts, people (judges), positions,
educations, political affiliations, opinion clusters and dockets.

API Documentation: https://www.courtlistener.com/help/api/rest/
Authenticated users get 5,000 requests/hour.
"""

from datetime import date, timedelta
from typing import Any, AsyncIterator, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from judgeindex.datasource.base import BaseDataSource, Page
from judgeindex.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from judgeindex.services.client import ProviderClient
from judgeindex.services.rate_limiter import (
    MemoryRateLimitBackend,
    RateLimiter,
    SqlRateLimitBackend,
)
from judgeindex.settings import Settings

M = TypeVar("M", bound=BaseModel)


def ref_to_id(value: Any) -> str | None:
    """Normalise an id, a nested object or a hyperlinked URL to a string id."""
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        return ref_to_id(value.get("id"))
    if isinstance(value, int):
        return str(value)
    text = str(value).rstrip("/")
    return text.rsplit("/", 1)[-1] if "/" in text else text


class ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return ref_to_id(value) or ""


class Court(ProviderModel):
    full_name: str = ""
    short_name: str = ""
    jurisdiction: str = ""
    url: str = ""
    in_use: bool = True


class Person(ProviderModel):
    name_first: str = ""
    name_middle: str = ""
    name_last: str = ""
    name_suffix: str = ""
    gender: str = ""
    date_dob: date | None = None

    @property
    def full_name(self) -> str:
        parts = [self.name_first, self.name_middle, self.name_last, self.name_suffix]
        return " ".join(p for p in parts if p).strip()


class Position(ProviderModel):
    person: str | None = None
    court: str | None = None
    position_type: str | None = ""
    appointer: str | None = ""
    how_selected: str | None = ""
    date_start: date | None = None
    date_termination: date | None = None

    @field_validator("person", "court", "appointer", mode="before")
    @classmethod
    def _coerce_ref(cls, value: Any) -> str | None:
        return ref_to_id(value)


class Education(ProviderModel):
    person: str | None = None
    school: str = ""
    degree_level: str = ""
    degree_detail: str = ""
    degree_year: int | None = None

    @field_validator("person", mode="before")
    @classmethod
    def _coerce_person(cls, value: Any) -> str | None:
        return ref_to_id(value)

    @field_validator("school", mode="before")
    @classmethod
    def _school_name(cls, value: Any) -> str:
        if isinstance(value, dict):
            return value.get("name", "")
        return value or ""


class PoliticalAffiliation(ProviderModel):
    person: str | None = None
    political_party: str = ""
    source: str = ""
    date_start: date | None = None
    date_end: date | None = None

    @field_validator("person", mode="before")
    @classmethod
    def _coerce_person(cls, value: Any) -> str | None:
        return ref_to_id(value)


class OpinionCluster(ProviderModel):
    case_name: str = ""
    docket_id: str | None = None
    date_filed: date | None = None
    disposition: str = ""
    summary: str = ""
    syllabus: str = ""
    nature_of_suit: str = ""
    precedential_status: str = ""

    @field_validator("docket_id", mode="before")
    @classmethod
    def _coerce_docket(cls, value: Any) -> str | None:
        return ref_to_id(value)

    @field_validator("disposition", "summary", "syllabus", "nature_of_suit", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return value or ""


class Docket(ProviderModel):
    case_name: str = ""
    docket_number: str = ""
    court_id: str | None = None
    nature_of_suit: str = ""
    cause: str = ""
    date_filed: date | None = None
    date_terminated: date | None = None
    assigned_to_id: str | None = None

    @field_validator("court_id", "assigned_to_id", mode="before")
    @classmethod
    def _coerce_ref(cls, value: Any) -> str | None:
        return ref_to_id(value)

    @field_validator("docket_number", "nature_of_suit", "cause", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return value or ""


class CourtListenerSource(BaseDataSource):
    """
    CourtListener REST API data source.

    One method per resource; each returns a single Page. iter_pages() walks
    the cursor chain with a page cap so callers bound their request budget.
    """

    SERVICE_ID = "courtlistener"

    def __init__(self, client: ProviderClient, api_key: str = ""):
        super().__init__(client)
        self.api_key = api_key

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_page(
        self,
        model: type[M],
        path: str,
        params: dict[str, Any] | None = None,
        cursor: str | None = None,
    ) -> Page[M]:
        # A cursor is the provider's absolute "next" URL with params baked in
        result = await self.client.request(cursor or path, params=None if cursor else params)
        data = result.data
        return Page[model](
            results=[model.model_validate(item) for item in data.get("results", [])],
            count=data.get("count"),
            next=data.get("next"),
            previous=data.get("previous"),
        )

    async def iter_pages(
        self,
        fetch_page,
        max_pages: int,
    ) -> AsyncIterator[Page[Any]]:
        """Yield pages from ``fetch_page(cursor)`` until exhausted or max_pages."""
        cursor: str | None = None
        for _ in range(max_pages):
            page = await fetch_page(cursor)
            yield page
            if not page.has_next:
                return
            cursor = page.next
        logger.debug(f"Stopped paging after {max_pages} pages")

    async def list_courts(
        self, jurisdiction: str | None = None, cursor: str | None = None
    ) -> Page[Court]:
        params: dict[str, Any] = {"in_use": "true"}
        if jurisdiction:
            params["jurisdiction"] = jurisdiction
        return await self._get_page(Court, "/courts/", params, cursor)

    async def list_people(
        self, court_id: str | None = None, cursor: str | None = None
    ) -> Page[Person]:
        params: dict[str, Any] = {"is_alias_of__isnull": "true"}
        if court_id:
            params["positions__court"] = court_id
        return await self._get_page(Person, "/people/", params, cursor)

    async def get_person(self, person_id: str) -> Person:
        result = await self.client.request(f"/people/{person_id}/")
        return Person.model_validate(result.data)

    async def list_positions(self, person_id: str, cursor: str | None = None) -> Page[Position]:
        return await self._get_page(Position, "/positions/", {"person": person_id}, cursor)

    async def list_educations(
        self, person_id: str, cursor: str | None = None
    ) -> Page[Education]:
        return await self._get_page(Education, "/educations/", {"person": person_id}, cursor)

    async def list_political_affiliations(
        self, person_id: str, cursor: str | None = None
    ) -> Page[PoliticalAffiliation]:
        return await self._get_page(
            PoliticalAffiliation, "/political-affiliations/", {"person": person_id}, cursor
        )

    async def list_opinions(
        self,
        person_id: str,
        filed_after: date | None = None,
        cursor: str | None = None,
    ) -> Page[OpinionCluster]:
        """Opinion clusters on which the judge sat."""
        params: dict[str, Any] = {"panel": person_id, "order_by": "-date_filed"}
        if filed_after:
            params["date_filed__gte"] = filed_after.isoformat()
        return await self._get_page(OpinionCluster, "/clusters/", params, cursor)

    async def list_dockets(
        self,
        person_id: str,
        filed_after: date | None = None,
        cursor: str | None = None,
    ) -> Page[Docket]:
        """Dockets assigned to the judge."""
        params: dict[str, Any] = {"assigned_to": person_id, "order_by": "-date_filed"}
        if filed_after:
            params["date_filed__gte"] = filed_after.isoformat()
        return await self._get_page(Docket, "/dockets/", params, cursor)


def build_courtlistener_source(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> CourtListenerSource:
    """Wire a CourtListenerSource with the process-wide limiter and breaker.

    The database backend shares the hourly budget across worker processes;
    without a session factory the budget is kept in memory.
    """
    service_id = CourtListenerSource.SERVICE_ID
    if session_factory is not None and settings.rate_limit_backend == "database":
        backend = SqlRateLimitBackend(
            session_factory,
            service_id,
            limit=settings.courtlistener_hourly_limit,
            buffer_limit=settings.courtlistener_buffer_limit,
        )
    else:
        backend = MemoryRateLimitBackend(
            limit=settings.courtlistener_hourly_limit,
            buffer_limit=settings.courtlistener_buffer_limit,
        )

    breaker = CircuitBreaker(
        service_id,
        CircuitBreakerConfig(
            failure_threshold=settings.circuit_failure_threshold,
            cooldown=timedelta(seconds=settings.circuit_cooldown_seconds),
            max_cooldown=timedelta(seconds=settings.circuit_max_cooldown_seconds),
        ),
    )

    headers = {"Accept": "application/json"}
    if settings.courtlistener_api_key:
        headers["Authorization"] = f"Token {settings.courtlistener_api_key}"
    else:
        logger.warning("COURTLISTENER_API_KEY not set, provider requests are anonymous")

    client = ProviderClient(
        service_id=service_id,
        base_url=settings.courtlistener_base_url,
        rate_limiter=RateLimiter(service_id, backend),
        circuit_breaker=breaker,
        headers=headers,
        timeout=settings.courtlistener_timeout,
        max_retries=settings.courtlistener_max_retries,
        backoff_base=settings.courtlistener_backoff_base,
        backoff_cap=settings.courtlistener_backoff_cap,
        min_interval=settings.courtlistener_min_interval,
    )
    return CourtListenerSource(client, api_key=settings.courtlistener_api_key)
