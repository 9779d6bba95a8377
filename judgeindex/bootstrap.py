"""
Process-wide component wiring.

One RateLimiter, one CircuitBreaker and one CacheManager per process; every
consumer gets them by reference through Components.
"""

from dataclasses import dataclass
from datetime import timedelta

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from judgeindex.ai.augmenter import build_augmenter
from judgeindex.analysis.config import AnalyticsConfig
from judgeindex.analysis.engine import AnalyticsEngine
from judgeindex.datasource.courtlistener import CourtListenerSource, build_courtlistener_source
from judgeindex.services.analytics import AnalyticsService
from judgeindex.services.cache import CacheManager
from judgeindex.settings import Settings
from judgeindex.sync.orchestrator import SyncOrchestrator
from judgeindex.sync.phases import PhaseRunner
from judgeindex.sync.progress import SyncProgressStore
from judgeindex.sync.quality import DataQualityValidator
from judgeindex.sync.types import SyncOptions


@dataclass
class Components:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    source: CourtListenerSource
    progress_store: SyncProgressStore
    orchestrator: SyncOrchestrator
    validator: DataQualityValidator
    engine: AnalyticsEngine
    cache: CacheManager
    analytics: AnalyticsService

    def sync_options(self) -> SyncOptions:
        return SyncOptions(
            jurisdiction=self.settings.sync_jurisdiction or None,
            max_entities=self.settings.sync_max_entities,
            max_new_entities=self.settings.sync_max_new_entities,
        )

    async def close(self) -> None:
        await self.source.client.close()


def build_components(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> Components:
    source = build_courtlistener_source(settings, session_factory)
    store = SyncProgressStore(session_factory, settings.analytics_ready_threshold)
    orchestrator = SyncOrchestrator(
        source,
        session_factory,
        store,
        workers=settings.sync_workers,
        max_pages=settings.sync_max_pages,
        lookback_years=settings.analytics_lookback_years,
    )
    engine = AnalyticsEngine(
        session_factory,
        AnalyticsConfig.from_settings(settings),
        augmenter=build_augmenter(settings),
    )
    cache = CacheManager(
        session_factory,
        memory_ttl=timedelta(seconds=settings.cache_memory_ttl_seconds),
        memory_max_size=settings.cache_memory_max_size,
        distributed_ttl=timedelta(seconds=settings.cache_distributed_ttl_seconds),
        staleness=timedelta(days=settings.cache_staleness_days),
    )
    refresher = PhaseRunner(
        source,
        session_factory,
        store,
        max_pages=settings.sync_max_pages,
        lookback_years=settings.analytics_lookback_years,
    )
    analytics = AnalyticsService(
        session_factory,
        engine,
        cache,
        case_refresher=refresher,
        progress_store=store,
    )
    logger.info(
        f"Components ready (provider={source.service_id}, "
        f"rate_limit_backend={settings.rate_limit_backend}, "
        f"augmenter={engine.augmenter.model_name})"
    )
    return Components(
        settings=settings,
        session_factory=session_factory,
        source=source,
        progress_store=store,
        orchestrator=orchestrator,
        validator=DataQualityValidator(session_factory, store),
        engine=engine,
        cache=cache,
        analytics=analytics,
    )
