"""
Repository layer - wraps data access behind an AsyncSession

Writes are upserts keyed by the provider's stable IDs so every sync step can be
repeated safely. Callers own the transaction (commit / rollback).
"""

import json
from datetime import date, datetime, timedelta
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from judgeindex.datastore.models import (
    Base,
    CacheEntryDB,
    CaseDB,
    CourtAnalyticsSummaryDB,
    CourtDB,
    JudgeAnalyticsCacheDB,
    JudgeDB,
    JudgeEducationDB,
    JudgePoliticalAffiliationDB,
    JudgePositionDB,
    ProviderRateLimitDB,
    SyncProgressDB,
)

ModelT = TypeVar("ModelT", bound=Base)


async def upsert(
    session: AsyncSession,
    model: type[ModelT],
    key_column: str,
    key_value: Any,
    values: dict[str, Any],
) -> tuple[ModelT, bool]:
    """Update the row matching ``key_column == key_value`` or insert a new one.

    Returns the row and whether it was created.
    """
    result = await session.execute(
        select(model).where(getattr(model, key_column) == key_value)
    )
    row = result.scalar_one_or_none()
    if row is not None:
        for field, value in values.items():
            setattr(row, field, value)
        return row, False

    row = model(**{key_column: key_value, **values})
    session.add(row)
    await session.flush()
    return row, True


class CourtRepository:
    """Courts Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(self, courtlistener_id: str, **values: Any) -> tuple[CourtDB, bool]:
        return await upsert(self.session, CourtDB, "courtlistener_id", courtlistener_id, values)

    async def get(self, courtlistener_id: str) -> CourtDB | None:
        result = await self.session.execute(
            select(CourtDB).where(CourtDB.courtlistener_id == courtlistener_id)
        )
        return result.scalar_one_or_none()

    async def list_ids(self, jurisdiction: str | None = None) -> list[str]:
        stmt = select(CourtDB.courtlistener_id).where(CourtDB.in_use.is_(True))
        if jurisdiction:
            stmt = stmt.where(CourtDB.jurisdiction == jurisdiction)
        result = await self.session.execute(stmt.order_by(CourtDB.courtlistener_id))
        return list(result.scalars().all())


class JudgeRepository:
    """Judges Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(self, courtlistener_id: str, **values: Any) -> tuple[JudgeDB, bool]:
        return await upsert(self.session, JudgeDB, "courtlistener_id", courtlistener_id, values)

    async def get(self, courtlistener_id: str) -> JudgeDB | None:
        result = await self.session.execute(
            select(JudgeDB).where(JudgeDB.courtlistener_id == courtlistener_id)
        )
        return result.scalar_one_or_none()

    async def exists(self, courtlistener_id: str) -> bool:
        result = await self.session.execute(
            select(JudgeDB.id).where(JudgeDB.courtlistener_id == courtlistener_id)
        )
        return result.scalar_one_or_none() is not None

    async def update_fields(self, courtlistener_id: str, **values: Any) -> None:
        await self.session.execute(
            update(JudgeDB)
            .where(JudgeDB.courtlistener_id == courtlistener_id)
            .values(**values, updated_at=datetime.utcnow())
        )

    async def list_by_court(self) -> dict[str, list[str]]:
        """Map court id -> judge ids"""
        result = await self.session.execute(
            select(JudgeDB.court_id, JudgeDB.courtlistener_id).where(
                JudgeDB.court_id.is_not(None)
            )
        )
        grouped: dict[str, list[str]] = {}
        for court_id, judge_id in result.all():
            grouped.setdefault(court_id, []).append(judge_id)
        return grouped


class JudgeDetailsRepository:
    """Positions, educations and political affiliations Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert_position(self, courtlistener_id: str, **values: Any) -> JudgePositionDB:
        row, _ = await upsert(
            self.session, JudgePositionDB, "courtlistener_id", courtlistener_id, values
        )
        return row

    async def upsert_education(self, courtlistener_id: str, **values: Any) -> JudgeEducationDB:
        row, _ = await upsert(
            self.session, JudgeEducationDB, "courtlistener_id", courtlistener_id, values
        )
        return row

    async def upsert_affiliation(
        self, courtlistener_id: str, **values: Any
    ) -> JudgePoliticalAffiliationDB:
        row, _ = await upsert(
            self.session,
            JudgePoliticalAffiliationDB,
            "courtlistener_id",
            courtlistener_id,
            values,
        )
        return row

    async def count_positions(self, judge_id: str) -> int:
        result = await self.session.execute(
            select(func.count(JudgePositionDB.id)).where(
                JudgePositionDB.judge_id == judge_id
            )
        )
        return int(result.scalar_one())


class CaseRepository:
    """Cases Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(
        self, external_id: str, judge_id: str, **values: Any
    ) -> tuple[CaseDB, bool]:
        """Keyed by (external_id, judge_id): every panelist keeps their own row"""
        result = await self.session.execute(
            select(CaseDB).where(CaseDB.external_id == external_id, CaseDB.judge_id == judge_id)
        )
        row = result.scalar_one_or_none()
        if row is not None:
            for field, value in values.items():
                setattr(row, field, value)
            return row, False

        row = CaseDB(external_id=external_id, judge_id=judge_id, **values)
        self.session.add(row)
        await self.session.flush()
        return row, True

    async def count_for_judge(self, judge_id: str, source: str | None = None) -> int:
        stmt = select(func.count(CaseDB.id)).where(CaseDB.judge_id == judge_id)
        if source:
            stmt = stmt.where(CaseDB.source == source)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def list_for_judge(
        self,
        judge_id: str,
        since: date | None = None,
        limit: int = 1000,
    ) -> list[CaseDB]:
        """Most recent cases first, optionally bounded to a filing-date window"""
        stmt = select(CaseDB).where(CaseDB.judge_id == judge_id)
        if since is not None:
            stmt = stmt.where(CaseDB.filing_date >= since)
        stmt = stmt.order_by(CaseDB.filing_date.desc(), CaseDB.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class SyncProgressRepository:
    """Sync progress Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, entity_id: str) -> SyncProgressDB | None:
        result = await self.session.execute(
            select(SyncProgressDB).where(SyncProgressDB.entity_id == entity_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, entity_id: str) -> tuple[SyncProgressDB, bool]:
        existing = await self.get(entity_id)
        if existing is not None:
            return existing, False
        row = SyncProgressDB(entity_id=entity_id, phase="discovery")
        self.session.add(row)
        await self.session.flush()
        return row, True

    async def list_by_phases(
        self,
        phases: list[str],
        limit: int,
        errors_only: bool = False,
    ) -> list[SyncProgressDB]:
        """Rows in ``phases`` (given in pipeline order), earliest phase first"""
        phase_rank = case(
            {phase: rank for rank, phase in enumerate(phases)},
            value=SyncProgressDB.phase,
            else_=len(phases),
        )
        stmt = select(SyncProgressDB).where(SyncProgressDB.phase.in_(phases))
        if errors_only:
            stmt = stmt.where(SyncProgressDB.error_count > 0)
        stmt = stmt.order_by(phase_rank, SyncProgressDB.updated_at.asc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_with_errors(self, limit: int = 100) -> list[SyncProgressDB]:
        result = await self.session.execute(
            select(SyncProgressDB)
            .where(SyncProgressDB.error_count > 0)
            .order_by(SyncProgressDB.last_error_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_all(self) -> list[SyncProgressDB]:
        result = await self.session.execute(select(SyncProgressDB))
        return list(result.scalars().all())

    async def count_by_phase(self) -> dict[str, int]:
        result = await self.session.execute(
            select(SyncProgressDB.phase, func.count(SyncProgressDB.id)).group_by(
                SyncProgressDB.phase
            )
        )
        return {phase: int(count) for phase, count in result.all()}

    async def count_where(self, *conditions: Any) -> int:
        result = await self.session.execute(
            select(func.count(SyncProgressDB.id)).where(*conditions)
        )
        return int(result.scalar_one())


class RateLimitRepository:
    """Shared request budget Repository

    Every mutation is a single conditional UPDATE so concurrent workers can
    neither over-acquire nor lose increments.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, provider: str) -> ProviderRateLimitDB | None:
        result = await self.session.execute(
            select(ProviderRateLimitDB).where(ProviderRateLimitDB.provider == provider)
        )
        return result.scalar_one_or_none()

    async def create(
        self, provider: str, limit: int, buffer_limit: int, now: datetime
    ) -> None:
        self.session.add(
            ProviderRateLimitDB(
                provider=provider,
                window_start=now,
                request_count=0,
                limit=limit,
                buffer_limit=buffer_limit,
            )
        )
        await self.session.flush()

    async def roll_window(self, provider: str, now: datetime, window: timedelta) -> bool:
        """Start a new window if the current one has elapsed"""
        result = await self.session.execute(
            update(ProviderRateLimitDB)
            .where(
                ProviderRateLimitDB.provider == provider,
                ProviderRateLimitDB.window_start <= now - window,
            )
            .values(window_start=now, request_count=0)
        )
        return result.rowcount == 1

    async def try_increment(self, provider: str, now: datetime) -> bool:
        """Take one slot if under the buffer limit and not blocked"""
        result = await self.session.execute(
            update(ProviderRateLimitDB)
            .where(
                ProviderRateLimitDB.provider == provider,
                ProviderRateLimitDB.request_count < ProviderRateLimitDB.buffer_limit,
                or_(
                    ProviderRateLimitDB.blocked_until.is_(None),
                    ProviderRateLimitDB.blocked_until <= now,
                ),
            )
            .values(
                request_count=ProviderRateLimitDB.request_count + 1,
                last_request_at=now,
            )
        )
        return result.rowcount == 1

    async def block_until(self, provider: str, until: datetime) -> None:
        """Extend (never shorten) the provider-imposed block"""
        await self.session.execute(
            update(ProviderRateLimitDB)
            .where(
                ProviderRateLimitDB.provider == provider,
                or_(
                    ProviderRateLimitDB.blocked_until.is_(None),
                    ProviderRateLimitDB.blocked_until < until,
                ),
            )
            .values(blocked_until=until)
        )

    async def reset(self, provider: str, now: datetime) -> None:
        await self.session.execute(
            update(ProviderRateLimitDB)
            .where(ProviderRateLimitDB.provider == provider)
            .values(window_start=now, request_count=0, blocked_until=None)
        )


class CacheEntryRepository:
    """Distributed cache table Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str, now: datetime | None = None) -> str | None:
        now = now or datetime.utcnow()
        result = await self.session.execute(
            select(CacheEntryDB.payload_json).where(
                CacheEntryDB.key == key,
                CacheEntryDB.expires_at > now,
            )
        )
        return result.scalar_one_or_none()

    async def set(self, key: str, payload_json: str, ttl: timedelta) -> None:
        now = datetime.utcnow()
        await upsert(
            self.session,
            CacheEntryDB,
            "key",
            key,
            {"payload_json": payload_json, "expires_at": now + ttl, "cached_at": now},
        )

    async def delete(self, key: str) -> None:
        await self.session.execute(delete(CacheEntryDB).where(CacheEntryDB.key == key))

    async def cleanup_expired(self) -> int:
        """Remove expired entries"""
        result = await self.session.execute(
            delete(CacheEntryDB).where(CacheEntryDB.expires_at <= datetime.utcnow())
        )
        deleted = result.rowcount or 0
        if deleted > 0:
            logger.debug(f"Cleaned up {deleted} expired cache entries")
        return deleted


class AnalyticsCacheRepository:
    """Durable analytics records Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, judge_id: str) -> JudgeAnalyticsCacheDB | None:
        result = await self.session.execute(
            select(JudgeAnalyticsCacheDB).where(JudgeAnalyticsCacheDB.judge_id == judge_id)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        judge_id: str,
        analytics: dict[str, Any],
        generated_at: datetime,
        total_cases_analyzed: int,
        analysis_quality: str,
    ) -> None:
        await upsert(
            self.session,
            JudgeAnalyticsCacheDB,
            "judge_id",
            judge_id,
            {
                "analytics_json": json.dumps(analytics, default=str),
                "generated_at": generated_at,
                "total_cases_analyzed": total_cases_analyzed,
                "analysis_quality": analysis_quality,
                "created_at": datetime.utcnow(),
            },
        )

    async def delete(self, judge_id: str) -> None:
        await self.session.execute(
            delete(JudgeAnalyticsCacheDB).where(JudgeAnalyticsCacheDB.judge_id == judge_id)
        )

    async def list_all(self) -> list[JudgeAnalyticsCacheDB]:
        result = await self.session.execute(select(JudgeAnalyticsCacheDB))
        return list(result.scalars().all())

    async def list_older_than(self, cutoff: datetime, limit: int = 50) -> list[str]:
        result = await self.session.execute(
            select(JudgeAnalyticsCacheDB.judge_id)
            .where(JudgeAnalyticsCacheDB.generated_at < cutoff)
            .order_by(JudgeAnalyticsCacheDB.generated_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class CourtAnalyticsSummaryRepository:
    """Aggregate view Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def replace_all(self, rows: list[dict[str, Any]]) -> None:
        await self.session.execute(delete(CourtAnalyticsSummaryDB))
        now = datetime.utcnow()
        for row in rows:
            self.session.add(CourtAnalyticsSummaryDB(**row, refreshed_at=now))
        await self.session.flush()

    async def get(self, court_id: str) -> CourtAnalyticsSummaryDB | None:
        result = await self.session.execute(
            select(CourtAnalyticsSummaryDB).where(
                CourtAnalyticsSummaryDB.court_id == court_id
            )
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[CourtAnalyticsSummaryDB]:
        result = await self.session.execute(
            select(CourtAnalyticsSummaryDB).order_by(CourtAnalyticsSummaryDB.court_id)
        )
        return list(result.scalars().all())

