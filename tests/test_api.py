"""Tests for the HTTP surface, over mocked components."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from judgeindex.analysis.types import AnalysisQuality, AnalyticsRecord
from judgeindex.api.app import create_app
from judgeindex.exceptions import AnalyticsUnavailable
from judgeindex.services.analytics import AnalyticsResponse
from judgeindex.services.circuit_breaker import CircuitState
from judgeindex.services.errors import (
    DurableStoreError,
    ProviderUnavailableError,
    RateLimitedError,
)
from judgeindex.sync.quality import ValidationReport
from judgeindex.sync.types import SyncOptions, SyncRunSummary, SyncStatus


def analytics_response(judge_id: str = "1001") -> AnalyticsResponse:
    return AnalyticsResponse(
        judge_id=judge_id,
        analytics=AnalyticsRecord(
            judge_id=judge_id,
            analysis_quality=AnalysisQuality.PROFILE_BASED,
            generated_at=datetime(2026, 1, 5, 8, 0, 0),
            model_used="profile_based",
        ),
        is_stale=False,
        source="memory",
        served_at=datetime(2026, 1, 6, 8, 0, 0),
    )


@pytest.fixture
def components() -> MagicMock:
    components = MagicMock()
    components.analytics.get_analytics = AsyncMock(return_value=analytics_response())
    components.sync_options.return_value = SyncOptions(jurisdiction="S")
    components.orchestrator.is_running = False
    components.orchestrator.last_summary = None
    components.orchestrator.run = AsyncMock(
        return_value=SyncRunSummary(status=SyncStatus.COMPLETED, entities_processed=2)
    )
    components.progress_store.summary = AsyncMock(return_value={"total_entities": 2})
    components.progress_store.list_with_errors = AsyncMock(return_value=[])
    components.source.client.get_health_status = AsyncMock(
        return_value={"circuit_breaker": {"state": "closed"}, "rate_limit": {"remaining": 4700}}
    )
    components.source.client.circuit_breaker.state = CircuitState.CLOSED
    components.cache.refresh_aggregate_views = AsyncMock(return_value=3)
    components.cache.get_status.return_value = {"hits": 0}
    components.validator.run = AsyncMock(return_value=ValidationReport(checked=5))
    return components


@pytest.fixture
def client(components) -> TestClient:
    return TestClient(create_app(components))


class TestJudgeAnalytics:
    def test_returns_analytics(self, client, components):
        response = client.get("/judges/1001/analytics")

        assert response.status_code == 200
        body = response.json()
        assert body["judge_id"] == "1001"
        assert body["analytics"]["analysis_quality"] == "profile_based"
        assert body["is_stale"] is False
        components.analytics.get_analytics.assert_awaited_once_with("1001", False)

    def test_force_refresh_flag(self, client, components):
        client.get("/judges/1001/analytics", params={"force_refresh": "true"})

        components.analytics.get_analytics.assert_awaited_once_with("1001", True)

    def test_unknown_judge_is_404(self, client, components):
        components.analytics.get_analytics.side_effect = AnalyticsUnavailable("404")

        response = client.get("/judges/404/analytics")

        assert response.status_code == 404

    def test_rate_limited_is_typed_503(self, client, components):
        components.analytics.get_analytics.side_effect = RateLimitedError(
            "courtlistener", retry_after=12.2
        )

        response = client.get("/judges/1001/analytics", params={"force_refresh": "true"})

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["error"] == "rate_limited"
        assert detail["retry_after"] == 13
        assert response.headers["Retry-After"] == "13"

    def test_open_circuit_is_typed_503(self, client, components):
        components.analytics.get_analytics.side_effect = ProviderUnavailableError(
            "courtlistener", reset_after_seconds=30
        )

        response = client.get("/judges/1001/analytics", params={"force_refresh": "true"})

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "provider_unavailable"

    def test_storage_failure_is_typed_503(self, client, components):
        components.analytics.get_analytics.side_effect = DurableStoreError("disk full")

        response = client.get("/judges/1001/analytics")

        assert response.status_code == 503
        assert response.json()["detail"] == {
            "error": "storage_unavailable",
            "message": "disk full",
            "retry_after": None,
        }

    def test_raw_database_error_is_typed_503(self, client, components):
        components.analytics.get_analytics.side_effect = OperationalError(
            "SELECT judges", {}, Exception("database is locked")
        )

        response = client.get("/judges/1001/analytics")

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "storage_unavailable"


class TestCourtSummary:
    def test_summary(self, client):
        row = MagicMock(
            court_id="cal",
            judges_with_analytics=2,
            total_cases_analyzed=240,
            avg_overall_confidence=50.0,
            metric_averages_json='{"civil_plaintiff_favor": 50.0}',
            refreshed_at=datetime(2026, 1, 6, 3, 0, 0),
        )
        with patch("judgeindex.api.app.CourtAnalyticsSummaryRepository") as repo:
            repo.return_value.get = AsyncMock(return_value=row)
            response = client.get("/courts/cal/analytics-summary")

        assert response.status_code == 200
        assert response.json()["metric_averages"] == {"civil_plaintiff_favor": 50.0}

    def test_missing_summary_is_404(self, client):
        with patch("judgeindex.api.app.CourtAnalyticsSummaryRepository") as repo:
            repo.return_value.get = AsyncMock(return_value=None)
            response = client.get("/courts/nysd/analytics-summary")

        assert response.status_code == 404


class TestAdminSync:
    def test_wait_returns_summary(self, client, components):
        response = client.post("/admin/sync", json={"wait": True, "max_entities": 10})

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "finished"
        assert body["summary"]["entities_processed"] == 2
        options = components.orchestrator.run.await_args.args[0]
        assert options.max_entities == 10
        assert options.jurisdiction == "S"

    def test_background_start(self, client, components):
        response = client.post("/admin/sync")

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "started"
        assert body["options"]["jurisdiction"] == "S"
        assert body["options"]["phases"][0] == "discovery"

    def test_running_sync_is_409(self, client, components):
        components.orchestrator.is_running = True

        response = client.post("/admin/sync", json={"wait": True})

        assert response.status_code == 409
        components.orchestrator.run.assert_not_awaited()

    def test_complete_phase_is_rejected(self, client):
        response = client.post("/admin/sync", json={"phases": ["complete"]})

        assert response.status_code == 422

    def test_max_entities_is_bounded(self, client):
        response = client.post("/admin/sync", json={"max_entities": 5000})

        assert response.status_code == 422

    def test_sync_progress(self, client):
        response = client.get("/admin/sync-progress")

        assert response.status_code == 200
        body = response.json()
        assert body["running"] is False
        assert body["progress"] == {"total_entities": 2}
        assert body["last_run"] is None
        assert body["recent_errors"] == []


class TestAdminOperations:
    def test_rate_limit_status(self, client):
        response = client.get("/admin/rate-limit-status")

        assert response.json()["rate_limit"]["remaining"] == 4700

    def test_views_refresh(self, client):
        response = client.post("/admin/analytics-views/refresh")

        assert response.json() == {"status": "ok", "courts_refreshed": 3}

    def test_views_refresh_failure_is_503(self, client, components):
        components.cache.refresh_aggregate_views.side_effect = RuntimeError("locked")

        response = client.post("/admin/analytics-views/refresh")

        assert response.status_code == 503

    def test_data_quality(self, client, components):
        response = client.post("/admin/data-quality", params={"fix": "false"})

        assert response.json()["checked"] == 5
        components.validator.run.assert_awaited_once_with(fix=False)

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["provider_circuit"] == "closed"
        assert body["scheduler"] is None
