"""FastAPI server for judge analytics and sync administration."""

import json
import math
from typing import Any

from fastapi import BackgroundTasks, FastAPI, Query, status
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from judgeindex.bootstrap import Components
from judgeindex.datastore.repositories import CourtAnalyticsSummaryRepository
from judgeindex.exceptions import (
    AnalyticsUnavailable,
    ConflictError,
    NotFoundError,
    ServiceUnavailableHTTPError,
    ValidationError,
)
from judgeindex.jobs.scheduler import JobScheduler
from judgeindex.services.analytics import AnalyticsResponse
from judgeindex.services.errors import (
    CacheError,
    ProviderUnavailableError,
    RateLimitedError,
    ServiceError,
    SyncInProgressError,
)
from judgeindex.sync.types import SyncOptions, SyncPhase


class SyncRequest(BaseModel):
    jurisdiction: str | None = None
    max_entities: int | None = Field(default=None, ge=1, le=1000)
    max_new_entities: int | None = Field(default=None, ge=0, le=1000)
    phases: list[SyncPhase] | None = None
    discover_courts: bool = True
    discover_judges: bool = True
    retry_errors_only: bool = False
    wait: bool = False


def _unavailable(e: ServiceError) -> ServiceUnavailableHTTPError:
    """Map a service-layer failure onto a typed 503 body."""
    if isinstance(e, RateLimitedError):
        error, retry_after = "rate_limited", e.retry_after
    elif isinstance(e, ProviderUnavailableError):
        error, retry_after = "provider_unavailable", e.reset_after_seconds
    elif isinstance(e, CacheError):
        error, retry_after = "storage_unavailable", None
    else:
        error, retry_after = "service_unavailable", None
    if retry_after is not None:
        retry_after = max(1, math.ceil(retry_after))
    return ServiceUnavailableHTTPError(
        detail={"error": error, "message": str(e), "retry_after": retry_after},
        retry_after=retry_after,
    )


class JudgeIndexServer:
    """HTTP surface over the analytics service and the sync subsystem."""

    def __init__(self, components: Components, scheduler: JobScheduler | None = None):
        self.components = components
        self.scheduler = scheduler
        self.app = FastAPI(title="judgeindex")

        # Register routes
        self.app.get("/judges/{judge_id}/analytics", response_model=AnalyticsResponse)(
            self.get_judge_analytics
        )
        self.app.get("/courts/{court_id}/analytics-summary")(self.get_court_summary)
        self.app.post("/admin/sync", status_code=status.HTTP_202_ACCEPTED)(self.start_sync)
        self.app.get("/admin/sync-progress")(self.sync_progress)
        self.app.get("/admin/rate-limit-status")(self.rate_limit_status)
        self.app.post("/admin/analytics-views/refresh")(self.refresh_analytics_views)
        self.app.post("/admin/data-quality")(self.run_data_quality)
        self.app.get("/health")(self.health_check)

    async def get_judge_analytics(
        self,
        judge_id: str,
        force_refresh: bool = Query(False),
    ) -> AnalyticsResponse:
        """Analytics for one judge, served from cache unless a refresh is forced."""
        try:
            return await self.components.analytics.get_analytics(judge_id, force_refresh)
        except AnalyticsUnavailable as e:
            raise NotFoundError(f"Judge '{e.judge_id}' not found") from e
        except ServiceError as e:
            logger.warning(f"Analytics for judge {judge_id} unavailable: {e}")
            raise _unavailable(e) from e
        except SQLAlchemyError as e:
            logger.error(f"Storage failure serving analytics for judge {judge_id}: {e}")
            raise _unavailable(CacheError(str(e))) from e

    async def get_court_summary(self, court_id: str) -> dict[str, Any]:
        async with self.components.session_factory() as session:
            row = await CourtAnalyticsSummaryRepository(session).get(court_id)
        if row is None:
            raise NotFoundError(f"No analytics summary for court '{court_id}'")
        return {
            "court_id": row.court_id,
            "judges_with_analytics": row.judges_with_analytics,
            "total_cases_analyzed": row.total_cases_analyzed,
            "avg_overall_confidence": row.avg_overall_confidence,
            "metric_averages": json.loads(row.metric_averages_json or "{}"),
            "refreshed_at": row.refreshed_at.isoformat(),
        }

    async def start_sync(
        self,
        background_tasks: BackgroundTasks,
        request: SyncRequest | None = None,
    ) -> dict[str, Any]:
        """Start a sync run; with ``wait`` the run summary is returned inline."""
        request = request or SyncRequest()
        orchestrator = self.components.orchestrator
        if orchestrator.is_running:
            raise ConflictError("A sync run is already in progress")

        options = self._sync_options(request)
        if request.wait:
            try:
                summary = await orchestrator.run(options)
            except SyncInProgressError as e:
                raise ConflictError(str(e)) from e
            return {"status": "finished", "summary": summary.to_dict()}

        background_tasks.add_task(self._run_sync, options)
        return {
            "status": "started",
            "options": {
                "jurisdiction": options.jurisdiction,
                "max_entities": options.max_entities,
                "max_new_entities": options.max_new_entities,
                "phases": [p.value for p in options.phases],
            },
        }

    def _sync_options(self, request: SyncRequest) -> SyncOptions:
        defaults = self.components.sync_options()
        if request.phases is not None and SyncPhase.COMPLETE in request.phases:
            raise ValidationError("'complete' is not a runnable phase")
        return SyncOptions(
            jurisdiction=request.jurisdiction or defaults.jurisdiction,
            max_entities=request.max_entities or defaults.max_entities,
            max_new_entities=(
                request.max_new_entities
                if request.max_new_entities is not None
                else defaults.max_new_entities
            ),
            phases=request.phases or defaults.phases,
            discover_courts=request.discover_courts,
            discover_judges=request.discover_judges,
            retry_errors_only=request.retry_errors_only,
        )

    async def _run_sync(self, options: SyncOptions) -> None:
        try:
            await self.components.orchestrator.run(options)
        except SyncInProgressError:
            logger.warning("Admin sync skipped, a run is already in progress")

    async def sync_progress(self) -> dict[str, Any]:
        orchestrator = self.components.orchestrator
        store = self.components.progress_store
        last = orchestrator.last_summary
        return {
            "running": orchestrator.is_running,
            "progress": await store.summary(),
            "last_run": last.to_dict() if last else None,
            "recent_errors": [
                {
                    "entity_id": p.entity_id,
                    "phase": p.phase.value,
                    "error_count": p.error_count,
                    "last_error": p.last_error,
                    "last_error_at": p.last_error_at.isoformat() if p.last_error_at else None,
                }
                for p in await store.list_with_errors(limit=20)
            ],
        }

    async def rate_limit_status(self) -> dict[str, Any]:
        return await self.components.source.client.get_health_status()

    async def refresh_analytics_views(self) -> dict[str, Any]:
        try:
            courts = await self.components.cache.refresh_aggregate_views()
        except Exception as e:
            logger.error(f"Analytics views refresh failed: {e}")
            raise ServiceUnavailableHTTPError(
                detail={"error": "storage_unavailable", "message": str(e), "retry_after": None}
            ) from e
        return {"status": "ok", "courts_refreshed": courts}

    async def run_data_quality(self, fix: bool = Query(True)) -> dict[str, Any]:
        report = await self.components.validator.run(fix=fix)
        return report.to_dict()

    async def health_check(self) -> dict[str, Any]:
        """Health check endpoint."""
        breaker = self.components.source.client.circuit_breaker
        return {
            "status": "ok",
            "service": "judgeindex",
            "provider_circuit": breaker.state.value,
            "cache": self.components.cache.get_status(),
            "scheduler": self.scheduler.get_status() if self.scheduler else None,
        }


def create_app(components: Components, scheduler: JobScheduler | None = None) -> FastAPI:
    """Create the FastAPI app.

    Args:
        components: Process-wide components from build_components()
        scheduler: Optional job scheduler reported by /health

    Returns:
        FastAPI app
    """
    server = JudgeIndexServer(components, scheduler)
    return server.app
