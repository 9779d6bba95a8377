"""Tests for analytics generation."""

import asyncio
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from judgeindex.ai.augmenter import Augmentation
from judgeindex.analysis.config import AnalyticsConfig
from judgeindex.analysis.engine import AnalyticsEngine
from judgeindex.analysis.types import AnalysisQuality
from judgeindex.exceptions import AnalyticsUnavailable
from judgeindex.services.errors import AugmentationError, CacheError
from tests.conftest import seed_cases, seed_judge

CIVIL_CASES = [
    {"case_type": "Civil", "outcome": "Judgment for plaintiff", "summary": "motion granted"},
    {"case_type": "Civil", "outcome": "Dismissed", "summary": ""},
    {"case_type": "Civil", "outcome": "Awarded damages", "summary": "settlement conference held"},
]


class FakeAugmenter:
    model_name = "fake-model"

    def __init__(self, result: Augmentation | None = None, error: Exception | None = None, delay: float = 0):
        self.result = result or Augmentation()
        self.error = error
        self.delay = delay
        self.calls = 0

    def is_enabled(self) -> bool:
        return True

    async def augment(self, record, cases) -> Augmentation:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def make_engine(session_factory, augmenter=None, **config) -> AnalyticsEngine:
    return AnalyticsEngine(session_factory, AnalyticsConfig(**config), augmenter=augmenter)


class TestStatisticalAnalytics:
    async def test_small_sample_is_insufficient_and_not_augmented(self, session_factory):
        await seed_judge(session_factory, "1001")
        await seed_cases(session_factory, "1001", CIVIL_CASES)
        augmenter = FakeAugmenter()

        record = await make_engine(session_factory, augmenter).generate("1001")

        assert record.total_cases_analyzed == 3
        assert record.analysis_quality == AnalysisQuality.INSUFFICIENT
        assert record.model_used == "statistical"
        assert augmenter.calls == 0

        civil = record.metrics["civil_plaintiff_favor"]
        assert civil.sample_size == 3
        assert civil.value == pytest.approx(66.7)
        assert civil.suppressed
        assert 0 < civil.confidence <= 40

        # No case qualified for the metric
        assert record.metrics["criminal_sentencing_severity"].value is None
        assert record.metrics["criminal_sentencing_severity"].confidence == 0
        assert any("Limited" in item for item in record.data_limitations)
        assert record.indicators is not None

    async def test_cases_outside_window_are_ignored(self, session_factory):
        await seed_judge(session_factory, "1001")
        await seed_cases(session_factory, "1001", CIVIL_CASES, filing_date=date(1990, 1, 1))

        record = await make_engine(session_factory).generate("1001")

        assert record.analysis_quality == AnalysisQuality.PROFILE_BASED

    async def test_unknown_judge(self, session_factory):
        with pytest.raises(AnalyticsUnavailable) as exc_info:
            await make_engine(session_factory).generate("404")
        assert exc_info.value.reason == "not_found"

    async def test_storage_failure_is_a_cache_error(self):
        def broken_session_factory():
            raise OperationalError("SELECT judges", {}, Exception("database is locked"))

        with pytest.raises(CacheError):
            await make_engine(broken_session_factory).generate("1001")


class TestProfileAnalytics:
    async def test_home_region_shift(self, session_factory):
        await seed_judge(session_factory, "1001")

        record = await make_engine(session_factory).generate("1001")

        assert record.model_used == "profile_based"
        assert record.overall_confidence == 0
        assert record.metrics["civil_plaintiff_favor"].value == 53
        assert record.metrics["contract_enforcement_rate"].value == 63
        assert record.metrics["appeal_reversal_rate"].value == 15
        assert all(m.confidence == 0 for m in record.metrics.values())

    async def test_other_region_uses_defaults(self, session_factory):
        await seed_judge(
            session_factory, "2002", court_id="nysd", court_name="S.D. New York", jurisdiction="FD"
        )

        record = await make_engine(session_factory).generate("2002")

        assert record.metrics["civil_plaintiff_favor"].value == 48

    async def test_home_region_matches_court_id_prefix(self, session_factory):
        await seed_judge(
            session_factory, "3003", court_id="calctapp", court_name="Court of Appeal, Second District"
        )

        record = await make_engine(session_factory).generate("3003")

        assert record.metrics["civil_plaintiff_favor"].value == 53

    async def test_circuit_court_is_not_home_region(self, session_factory):
        await seed_judge(
            session_factory, "4004", court_id="ca9", court_name="Ninth Circuit", jurisdiction="F"
        )

        record = await make_engine(session_factory).generate("4004")

        assert record.metrics["civil_plaintiff_favor"].value == 48


class TestAugmentation:
    async def test_augmentation_adds_prose_only(self, session_factory):
        await seed_judge(session_factory, "1001")
        await seed_cases(session_factory, "1001", CIVIL_CASES)
        baseline = await make_engine(session_factory).generate("1001")
        augmenter = FakeAugmenter(
            Augmentation(narrative="Measured.", notable_patterns=["Favours plaintiffs"])
        )

        record = await make_engine(
            session_factory, augmenter, augmentation_min_cases=1
        ).generate("1001")

        assert record.model_used == "statistical+fake-model"
        assert record.narrative == "Measured."
        assert "Favours plaintiffs" in record.notable_patterns
        assert record.metrics == baseline.metrics
        assert record.overall_confidence == baseline.overall_confidence

    async def test_failure_degrades_to_statistical(self, session_factory):
        await seed_judge(session_factory, "1001")
        await seed_cases(session_factory, "1001", CIVIL_CASES)
        augmenter = FakeAugmenter(error=AugmentationError("bad json", "openai"))

        record = await make_engine(
            session_factory, augmenter, augmentation_min_cases=1
        ).generate("1001")

        assert augmenter.calls == 1
        assert record.model_used == "statistical"
        assert record.narrative is None

    async def test_timeout_degrades_to_statistical(self, session_factory):
        await seed_judge(session_factory, "1001")
        await seed_cases(session_factory, "1001", CIVIL_CASES)
        augmenter = FakeAugmenter(delay=5)

        record = await make_engine(
            session_factory, augmenter, augmentation_min_cases=1, augmentation_timeout=0.05
        ).generate("1001")

        assert record.model_used == "statistical"
