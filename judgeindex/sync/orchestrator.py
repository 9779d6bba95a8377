"""
SyncOrchestrator - Drives judges through the ingestion phases.

A run has three steps:
1. Court discovery: upsert in-use courts for the jurisdiction
2. Judge discovery: find judges not seen before (capped by max_new_entities)
3. Pending work: take up to max_entities progress rows, earliest phase first,
   and drive each one forward through the requested phases

Entities are independent, so step 3 runs on a bounded worker pool. A failure
for one judge is recorded on its progress row and the run moves on. Running
out of request budget or hitting an open circuit stops the whole run with a
PARTIAL status, since every remaining entity would fail the same way.
"""

import asyncio
from datetime import datetime

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from judgeindex.datasource.courtlistener import Court, CourtListenerSource, Person
from judgeindex.datastore.repositories import CourtRepository, JudgeRepository
from judgeindex.services.errors import (
    ProviderUnavailableError,
    RateLimitedError,
    SyncInProgressError,
)
from judgeindex.sync.phases import PhaseRunner
from judgeindex.sync.progress import SyncProgressStore
from judgeindex.sync.types import (
    SyncOptions,
    SyncPhase,
    SyncProgress,
    SyncRunSummary,
    SyncStatus,
)

# Errors that affect every entity equally: stop the run instead of recording them
HALTING_ERRORS = (RateLimitedError, ProviderUnavailableError)


class SyncOrchestrator:
    """
    Resumable, idempotent ingestion of judges from the provider.

    Usage:
        orchestrator = SyncOrchestrator(source, get_session_factory(), store)
        summary = await orchestrator.run(SyncOptions(jurisdiction="S"))
    """

    def __init__(
        self,
        source: CourtListenerSource,
        session_factory: async_sessionmaker[AsyncSession],
        store: SyncProgressStore,
        workers: int = 4,
        max_pages: int = 5,
        lookback_years: int = 5,
    ):
        self.source = source
        self.store = store
        self.workers = max(1, workers)
        self.max_pages = max_pages
        self._session_factory = session_factory
        self._runner = PhaseRunner(
            source,
            session_factory,
            store,
            max_pages=max_pages,
            lookback_years=lookback_years,
        )

        self._run_lock = asyncio.Lock()
        self._stop_requested = False
        self._halt: BaseException | None = None
        self.last_summary: SyncRunSummary | None = None

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def stop(self) -> None:
        """Ask the active run to stop after the entities currently in flight."""
        if self.is_running:
            logger.info("Sync stop requested")
            self._stop_requested = True

    def _should_stop(self) -> bool:
        return self._stop_requested or self._halt is not None

    async def run(self, options: SyncOptions | None = None) -> SyncRunSummary:
        """Run one sync pass. Raises SyncInProgressError if one is active."""
        if self._run_lock.locked():
            raise SyncInProgressError("A sync run is already in progress", self.source.service_id)

        options = options or SyncOptions()
        async with self._run_lock:
            self._stop_requested = False
            self._halt = None
            summary = SyncRunSummary()
            logger.info(
                f"Sync run started (jurisdiction={options.jurisdiction}, "
                f"max_entities={options.max_entities}, "
                f"phases={[p.value for p in options.phases]})"
            )

            try:
                if options.discover_courts and not self._should_stop():
                    summary.courts_synced = await self._discover_courts(options)
                if options.discover_judges and not self._should_stop():
                    summary.entities_discovered = await self._discover_judges(options)
                if not self._should_stop():
                    await self._process_pending(options, summary)
                if self._halt is not None:
                    raise self._halt

                if self._stop_requested:
                    summary.status = SyncStatus.PARTIAL
                    summary.stop_reason = "stopped"

            except HALTING_ERRORS as e:
                summary.status = SyncStatus.PARTIAL
                summary.stop_reason = (
                    "rate_limited" if isinstance(e, RateLimitedError) else "provider_unavailable"
                )
                summary.errors.append(str(e))
                logger.warning(f"Sync run stopped early: {e}")

            except Exception as e:
                summary.status = SyncStatus.FAILED
                summary.stop_reason = type(e).__name__
                summary.errors.append(str(e))
                logger.exception(f"Sync run failed: {e}")

            summary.finished_at = datetime.utcnow()
            summary.rate_limit_remaining = await self._remaining_budget()
            self.last_summary = summary

            logger.info(
                f"Sync run {summary.status.value}: {summary.entities_processed} processed, "
                f"{summary.entities_updated} updated, {summary.entities_discovered} discovered, "
                f"{len(summary.errors)} errors in {summary.duration_seconds:.1f}s"
            )
            return summary

    async def _remaining_budget(self) -> int | None:
        try:
            stats = await self.source.client.rate_limiter.get_usage_stats()
        except Exception as e:
            logger.warning(f"Could not read rate limit usage: {e}")
            return None
        return stats["remaining"]

    # ── Discovery ─────────────────────────────────────────────────────────────

    async def _discover_courts(self, options: SyncOptions) -> int:
        synced = 0
        async for page in self.source.iter_pages(
            lambda cursor: self.source.list_courts(options.jurisdiction, cursor=cursor),
            self.max_pages,
        ):
            async with self._session_factory.begin() as session:
                repo = CourtRepository(session)
                for court in page.results:
                    await repo.upsert(court.id, **self._court_fields(court))
                    synced += 1
            if self._should_stop():
                break
        logger.info(f"Court discovery: {synced} courts upserted")
        return synced

    @staticmethod
    def _court_fields(court: Court) -> dict:
        return {
            "name": court.full_name or court.short_name or court.id,
            "short_name": court.short_name,
            "jurisdiction": court.jurisdiction,
            "url": court.url,
            "in_use": court.in_use,
        }

    async def _discover_judges(self, options: SyncOptions) -> int:
        """Register judges not seen before; known judges are left to the phase pipeline."""
        if options.max_new_entities <= 0:
            return 0

        async with self._session_factory() as session:
            court_ids = await CourtRepository(session).list_ids(options.jurisdiction)

        discovered = 0
        for court_id in court_ids:
            async for page in self.source.iter_pages(
                lambda cursor, court_id=court_id: self.source.list_people(court_id, cursor=cursor),
                self.max_pages,
            ):
                for person in page.results:
                    if await self._register_judge(person, court_id):
                        discovered += 1
                        if discovered >= options.max_new_entities:
                            logger.info(f"Judge discovery: reached cap of {discovered} new judges")
                            return discovered
                if self._should_stop():
                    return discovered

        logger.info(f"Judge discovery: {discovered} new judges")
        return discovered

    async def _register_judge(self, person: Person, court_id: str) -> bool:
        async with self._session_factory.begin() as session:
            judges = JudgeRepository(session)
            if await judges.exists(person.id):
                return False
            court = await CourtRepository(session).get(court_id)
            await judges.upsert(
                person.id,
                name=person.full_name or f"Judge {person.id}",
                gender=person.gender or "",
                date_of_birth=person.date_dob,
                court_id=court_id,
                court_name=court.name if court else "",
                jurisdiction=court.jurisdiction if court else "",
            )
        await self.store.ensure(person.id)
        return True

    # ── Phase pipeline ────────────────────────────────────────────────────────

    async def _process_pending(self, options: SyncOptions, summary: SyncRunSummary) -> None:
        pending = await self.store.list_pending(
            options.phases,
            limit=options.max_entities,
            errors_only=options.retry_errors_only,
        )
        if not pending:
            logger.info("No pending entities")
            return

        logger.info(f"Processing {len(pending)} pending entities with {self.workers} workers")
        semaphore = asyncio.Semaphore(self.workers)

        async def worker(progress: SyncProgress) -> None:
            async with semaphore:
                if self._should_stop():
                    return
                await self._process_entity(progress, options, summary)

        await asyncio.gather(*(worker(p) for p in pending))

    async def _process_entity(
        self,
        progress: SyncProgress,
        options: SyncOptions,
        summary: SyncRunSummary,
    ) -> None:
        """Drive one judge through every requested phase it has not completed."""
        entity_id = progress.entity_id
        phase = progress.phase
        wanted = set(options.phases)
        advanced = False
        summary.entities_processed += 1

        try:
            while phase != SyncPhase.COMPLETE and phase in wanted:
                await self._runner.run(phase, entity_id)
                advanced = True
                phase = phase.next()

        except HALTING_ERRORS as e:
            # Not this entity's fault: leave its row untouched
            if self._halt is None:
                self._halt = e

        except Exception as e:
            summary.errors.append(f"{entity_id}: {e}")
            logger.error(f"Sync failed for judge {entity_id} in phase '{phase.value}': {e}")
            await self.store.record_error(entity_id, e)

        else:
            if progress.error_count:
                await self.store.clear_error(entity_id)

        if advanced:
            summary.entities_updated += 1
