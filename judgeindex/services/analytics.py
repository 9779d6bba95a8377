"""
AnalyticsService - The inbound analytics API.

Plain reads go through CacheManager's tiered read path and never wait on a
regeneration unless nothing is stored yet. A forced refresh pulls the judge's
latest opinions and dockets from the provider (when a case refresher is
configured), regenerates synchronously and replaces the stored record.
"""

from datetime import datetime

from loguru import logger
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from judgeindex.analysis.engine import AnalyticsEngine
from judgeindex.analysis.types import AnalyticsRecord
from judgeindex.datastore.repositories import JudgeRepository
from judgeindex.exceptions import AnalyticsUnavailable
from judgeindex.services.cache import CacheManager
from judgeindex.services.errors import CacheError
from judgeindex.sync.phases import PhaseRunner
from judgeindex.sync.progress import SyncProgressStore


class AnalyticsResponse(BaseModel):
    judge_id: str
    analytics: AnalyticsRecord
    is_stale: bool = False
    source: str
    served_at: datetime


class RefreshReport(BaseModel):
    queued: int = 0
    refreshed: int = 0
    failed: int = 0


class AnalyticsService:
    """
    Usage:
        service = AnalyticsService(session_factory, engine, cache)
        response = await service.get_analytics("1234")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AnalyticsEngine,
        cache: CacheManager,
        case_refresher: PhaseRunner | None = None,
        progress_store: SyncProgressStore | None = None,
        refresh_batch_size: int = 20,
    ):
        self._session_factory = session_factory
        self.engine = engine
        self.cache = cache
        self.case_refresher = case_refresher
        self.progress_store = progress_store
        self.refresh_batch_size = refresh_batch_size

    async def _ensure_judge(self, judge_id: str) -> None:
        try:
            async with self._session_factory() as session:
                exists = await JudgeRepository(session).exists(judge_id)
        except SQLAlchemyError as e:
            raise CacheError(f"Judge lookup failed for {judge_id}: {e}") from e
        if not exists:
            raise AnalyticsUnavailable(judge_id, reason="not_found")

    async def get_analytics(self, judge_id: str, force_refresh: bool = False) -> AnalyticsResponse:
        """
        Raises:
            AnalyticsUnavailable: unknown judge
            RateLimitedError / ProviderUnavailableError: provider refused a forced refresh
            CacheError: the judge, case or analytics stores could not be read or written
        """
        if force_refresh:
            await self._ensure_judge(judge_id)
            logger.info(f"Forced analytics refresh for judge {judge_id}")
            lookup = await self.cache.get_or_generate(
                judge_id, self._refresh_and_generate, force_refresh=True
            )
        else:
            lookup = await self.cache.get_or_generate(judge_id, self.engine.generate)

        if lookup.is_stale:
            logger.warning(
                f"Serving stale analytics for judge {judge_id} "
                f"(generated {lookup.record.generated_at.isoformat()})"
            )
        return AnalyticsResponse(
            judge_id=judge_id,
            analytics=lookup.record,
            is_stale=lookup.is_stale,
            source=lookup.source,
            served_at=datetime.utcnow(),
        )

    async def _refresh_and_generate(self, judge_id: str) -> AnalyticsRecord:
        if self.case_refresher is not None:
            try:
                opinions = await self.case_refresher.sync_opinions(judge_id)
                dockets = await self.case_refresher.sync_dockets(judge_id)
                if self.progress_store is not None:
                    await self.progress_store.update_case_counts(
                        judge_id,
                        opinions_count=opinions["opinions_count"],
                        dockets_count=dockets["dockets_count"],
                    )
            except SQLAlchemyError as e:
                raise CacheError(f"Storing refreshed cases for judge {judge_id} failed: {e}") from e
        return await self.engine.generate(judge_id)

    async def refresh_stale(self, limit: int | None = None) -> RefreshReport:
        """Regenerate queued and out-of-window records from stored cases."""
        limit = limit or self.refresh_batch_size
        report = RefreshReport(queued=await self.cache.enqueue_stale(limit))

        for judge_id in self.cache.take_refreshes(limit):
            try:
                await self.cache.regenerate(judge_id, self.engine.generate)
                report.refreshed += 1
            except AnalyticsUnavailable:
                logger.warning(f"Judge {judge_id} no longer exists, dropping cached analytics")
                await self.cache.invalidate(judge_id)
                report.failed += 1
            except Exception as e:
                logger.error(f"Background analytics refresh failed for judge {judge_id}: {e}")
                report.failed += 1

        if report.refreshed or report.failed:
            logger.info(
                f"Background analytics refresh: {report.refreshed} refreshed, "
                f"{report.failed} failed"
            )
        return report
