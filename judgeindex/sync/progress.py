"""
SyncProgressStore - Durable per-judge ingestion progress.

Each judge has one row recording the furthest completed phase, phase flags,
case counts and error bookkeeping. advance() never moves a row backward; only
soft_reset() does, and it is reserved for the data quality validator and
admin tooling.
"""

from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from judgeindex.datastore.models import SyncProgressDB
from judgeindex.datastore.repositories import SyncProgressRepository
from judgeindex.sync.types import PENDING_PHASES, SyncPhase, SyncProgress

ANALYTICS_READY_THRESHOLD = 500
MAX_ERROR_LENGTH = 1000

_SYNCED_AT_FIELD = {
    SyncPhase.POSITIONS: "positions_synced_at",
    SyncPhase.DETAILS: "details_synced_at",
    SyncPhase.OPINIONS: "opinions_synced_at",
    SyncPhase.DOCKETS: "dockets_synced_at",
}


class SyncProgressStore:
    """
    Progress rows behind a session factory; every call is its own transaction.

    Usage:
        store = SyncProgressStore(get_session_factory())
        await store.ensure("1234")
        await store.advance("1234", SyncPhase.POSITIONS, has_positions=True)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        analytics_ready_threshold: int = ANALYTICS_READY_THRESHOLD,
    ):
        self._session_factory = session_factory
        self.analytics_ready_threshold = analytics_ready_threshold

    async def ensure(self, entity_id: str) -> tuple[SyncProgress, bool]:
        """Create the row in the discovery phase if missing."""
        async with self._session_factory.begin() as session:
            row, created = await SyncProgressRepository(session).get_or_create(entity_id)
            return SyncProgress.model_validate(row), created

    async def get(self, entity_id: str) -> SyncProgress | None:
        async with self._session_factory() as session:
            row = await SyncProgressRepository(session).get(entity_id)
            return SyncProgress.model_validate(row) if row else None

    async def advance(
        self, entity_id: str, completed: SyncPhase, **updates: Any
    ) -> SyncProgress:
        """Record ``completed`` as done and move to the following phase.

        A row already past ``completed`` keeps its phase; flag and count
        updates are still applied so re-running a phase is harmless.
        """
        now = datetime.utcnow()
        async with self._session_factory.begin() as session:
            row, _ = await SyncProgressRepository(session).get_or_create(entity_id)
            target = completed.next()
            if SyncPhase(row.phase) < target:
                row.phase = target.value
            synced_field = _SYNCED_AT_FIELD.get(completed)
            if synced_field:
                setattr(row, synced_field, now)
            for field_name, value in updates.items():
                setattr(row, field_name, value)
            self._apply_counts(row)
            row.updated_at = now
            await session.flush()
            return SyncProgress.model_validate(row)

    async def record_error(self, entity_id: str, error: str | BaseException) -> SyncProgress:
        message = str(error)[:MAX_ERROR_LENGTH] or type(error).__name__
        async with self._session_factory.begin() as session:
            row, _ = await SyncProgressRepository(session).get_or_create(entity_id)
            row.error_count += 1
            row.last_error = message
            row.last_error_at = datetime.utcnow()
            row.updated_at = row.last_error_at
            await session.flush()
            logger.debug(f"Sync error #{row.error_count} for {entity_id}: {message}")
            return SyncProgress.model_validate(row)

    async def clear_error(self, entity_id: str) -> None:
        async with self._session_factory.begin() as session:
            row = await SyncProgressRepository(session).get(entity_id)
            if row is None:
                return
            row.error_count = 0
            row.last_error = None
            row.last_error_at = None

    async def update_case_counts(
        self,
        entity_id: str,
        opinions_count: int | None = None,
        dockets_count: int | None = None,
    ) -> SyncProgress:
        """Set case counts and recompute total and analytics readiness."""
        async with self._session_factory.begin() as session:
            row, _ = await SyncProgressRepository(session).get_or_create(entity_id)
            if opinions_count is not None:
                row.opinions_count = opinions_count
            if dockets_count is not None:
                row.dockets_count = dockets_count
            self._apply_counts(row)
            row.updated_at = datetime.utcnow()
            await session.flush()
            return SyncProgress.model_validate(row)

    async def soft_reset(self, entity_id: str, phase: SyncPhase, reason: str = "") -> None:
        """Move a row back to ``phase`` so later phases are redone."""
        async with self._session_factory.begin() as session:
            row = await SyncProgressRepository(session).get(entity_id)
            if row is None:
                return
            row.phase = phase.value
            if phase <= SyncPhase.POSITIONS:
                row.has_positions = False
                row.positions_synced_at = None
            if phase <= SyncPhase.DETAILS:
                row.has_education = False
                row.has_political_affiliations = False
                row.details_synced_at = None
            if phase <= SyncPhase.OPINIONS:
                row.opinions_synced_at = None
            if phase <= SyncPhase.DOCKETS:
                row.dockets_synced_at = None
            row.updated_at = datetime.utcnow()
        logger.info(f"Sync progress for {entity_id} reset to '{phase.value}' {reason}".rstrip())

    async def list_pending(
        self,
        phases: list[SyncPhase] | None = None,
        limit: int = 50,
        errors_only: bool = False,
    ) -> list[SyncProgress]:
        """Rows still to process, earliest phase first, then least recently touched."""
        wanted = sorted(phases or PENDING_PHASES, key=lambda p: p.rank)
        async with self._session_factory() as session:
            rows = await SyncProgressRepository(session).list_by_phases(
                [p.value for p in wanted], limit=limit, errors_only=errors_only
            )
            return [SyncProgress.model_validate(row) for row in rows]

    async def list_with_errors(self, limit: int = 100) -> list[SyncProgress]:
        async with self._session_factory() as session:
            rows = await SyncProgressRepository(session).list_with_errors(limit)
            return [SyncProgress.model_validate(row) for row in rows]

    async def list_all(self) -> list[SyncProgress]:
        async with self._session_factory() as session:
            rows = await SyncProgressRepository(session).list_all()
            return [SyncProgress.model_validate(row) for row in rows]

    async def summary(self) -> dict[str, Any]:
        """Counts per phase, entities with errors and analytics-ready entities."""
        async with self._session_factory() as session:
            repo = SyncProgressRepository(session)
            by_phase = await repo.count_by_phase()
            with_errors = await repo.count_where(SyncProgressDB.error_count > 0)
            ready = await repo.count_where(SyncProgressDB.is_analytics_ready.is_(True))

        total = sum(by_phase.values())
        complete = by_phase.get(SyncPhase.COMPLETE.value, 0)
        return {
            "total_entities": total,
            "by_phase": {phase.value: by_phase.get(phase.value, 0) for phase in SyncPhase},
            "complete": complete,
            "completion_percent": round(complete / total * 100, 1) if total else 0.0,
            "with_errors": with_errors,
            "analytics_ready": ready,
        }

    def _apply_counts(self, row: SyncProgressDB) -> None:
        row.total_cases_count = (row.opinions_count or 0) + (row.dockets_count or 0)
        row.is_analytics_ready = row.total_cases_count >= self.analytics_ready_threshold
