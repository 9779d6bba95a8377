"""
AnalyticsEngine - Confidence-scored behavioural metrics for one judge.

generate() reads the judge and a bounded, time-windowed set of their cases
and returns an AnalyticsRecord. It never writes to any cache; CacheManager
persists what it returns.

- No cases: a profile-based record with no per-metric confidence
- Otherwise: ten keyword-classified ratio metrics, each gated on its own
  minimum sample size, plus bias indicators
- Optional augmentation adds prose only, runs under a timeout and never
  fails the generation
"""

import asyncio
from datetime import datetime
from typing import Callable

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from judgeindex.ai.augmenter import Augmenter, NoopAugmenter
from judgeindex.analysis import confidence as conf
from judgeindex.analysis import statistics as stats
from judgeindex.analysis.config import (
    HOME_REGION_COURT_PREFIXES,
    HOME_REGION_MARKERS,
    AnalyticsConfig,
)
from judgeindex.analysis.types import (
    AnalysisQuality,
    AnalysisWindow,
    AnalyticsRecord,
    CaseRecord,
    MetricResult,
)
from judgeindex.datastore.models import JudgeDB
from judgeindex.datastore.repositories import CaseRepository, JudgeRepository
from judgeindex.exceptions import AnalyticsUnavailable
from judgeindex.services.errors import CacheError
from judgeindex.sync.phases import lookback_start

# Profile-based estimates used when a judge has no cases in the window
PROFILE_DEFAULTS: dict[str, float] = {
    "civil_plaintiff_favor": 48,
    "family_custody_mother": 52,
    "family_alimony_favorable": 42,
    "contract_enforcement_rate": 68,
    "criminal_sentencing_severity": 50,
    "criminal_plea_acceptance": 75,
    "bail_release_rate": 65,
    "appeal_reversal_rate": 15,
    "settlement_encouragement_rate": 60,
    "motion_grant_rate": 45,
}
# Home-region adjustment direction per metric
PROFILE_REGION_SHIFT: dict[str, int] = {
    "civil_plaintiff_favor": 1,
    "family_custody_mother": 1,
    "family_alimony_favorable": 1,
    "contract_enforcement_rate": -1,
    "bail_release_rate": 1,
}
REGION_ADJUSTMENT = 5


class AnalyticsEngine:
    """
    Usage:
        engine = AnalyticsEngine(get_session_factory(), AnalyticsConfig.from_settings(settings))
        record = await engine.generate("1234")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: AnalyticsConfig | None = None,
        augmenter: Augmenter | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._session_factory = session_factory
        self.config = config or AnalyticsConfig()
        self.augmenter = augmenter or NoopAugmenter()
        self._clock = clock

    def _window(self) -> AnalysisWindow:
        start = lookback_start(self.config.lookback_years, self._clock().date())
        return AnalysisWindow(
            lookback_years=self.config.lookback_years,
            start_year=start.year,
            end_year=self._clock().year,
        )

    async def generate(self, judge_id: str) -> AnalyticsRecord:
        """
        Raises:
            AnalyticsUnavailable: unknown judge
            CacheError: the judge or case tables could not be read
        """
        window = self._window()
        since = lookback_start(self.config.lookback_years, self._clock().date())

        try:
            async with self._session_factory() as session:
                judge = await JudgeRepository(session).get(judge_id)
                if judge is None:
                    raise AnalyticsUnavailable(judge_id, reason="not_found")
                rows = await CaseRepository(session).list_for_judge(
                    judge_id, since=since, limit=self.config.case_limit
                )
                cases = [CaseRecord.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            raise CacheError(f"Case store read failed for judge {judge_id}: {e}") from e

        if not cases:
            logger.warning(f"No cases in window for judge {judge_id}, using profile estimates")
            return self._profile_record(judge, window)

        record = self._statistical_record(judge_id, cases, window)
        logger.info(
            f"Analytics for judge {judge_id}: {record.total_cases_analyzed} cases, "
            f"overall confidence {record.overall_confidence}, quality {record.analysis_quality.value}"
        )

        if self._should_augment(record):
            record = await self._augment(record, cases)
        return record

    # ── Statistical path ─────────────────────────────────────────────────────

    def _statistical_record(
        self, judge_id: str, cases: list[CaseRecord], window: AnalysisWindow
    ) -> AnalyticsRecord:
        metric_configs = self.config.metrics
        tallies = stats.tally(cases, metric_configs.keys())

        metrics: dict[str, MetricResult] = {}
        for name, metric_config in metric_configs.items():
            tally = tallies[name]
            confidence, suppressed = conf.metric_confidence(
                tally.total, metric_config.min_sample_size
            )
            ratio = tally.ratio
            metrics[name] = MetricResult(
                value=round(ratio * 100, 1) if ratio is not None else None,
                confidence=confidence,
                sample_size=tally.total,
                suppressed=suppressed,
            )

        total = len(cases)
        overall = conf.overall_confidence(metrics, metric_configs, total)
        patterns, limitations = self._describe(cases, metrics, tallies, window)

        return AnalyticsRecord(
            judge_id=judge_id,
            metrics=metrics,
            overall_confidence=overall,
            total_cases_analyzed=total,
            analysis_quality=conf.analysis_quality(total, overall),
            generated_at=self._clock(),
            model_used="statistical",
            notable_patterns=patterns,
            data_limitations=limitations,
            indicators=stats.bias_indicators(cases),
            window=window,
        )

    def _describe(
        self,
        cases: list[CaseRecord],
        metrics: dict[str, MetricResult],
        tallies: dict[str, stats.MetricTally],
        window: AnalysisWindow,
    ) -> tuple[list[str], list[str]]:
        total = len(cases)
        years = window.lookback_years
        patterns: list[str] = []
        limitations: list[str] = []

        if total > 200:
            patterns.append(f"Comprehensive {years}-year analysis: {total} cases analyzed")
        elif total > 100:
            patterns.append(f"Substantial {years}-year dataset: {total} cases analyzed")
        elif total >= 50:
            patterns.append(f"Moderate {years}-year dataset: {total} cases analyzed")
        else:
            limitations.append(f"Limited {years}-year data: only {total} cases available")

        if total < self.config.ready_threshold:
            limitations.append(
                f"Below the {self.config.ready_threshold}-case threshold for full analytics"
            )

        civil = tallies["civil_plaintiff_favor"].total if "civil_plaintiff_favor" in tallies else 0
        criminal = (
            tallies["criminal_sentencing_severity"].total
            if "criminal_sentencing_severity" in tallies
            else 0
        )
        if civil > 20:
            patterns.append(f"Civil cases: {stats.share(civil, total)}% of caseload")
        if criminal > 20:
            patterns.append(f"Criminal cases: {stats.share(criminal, total)}% of caseload")

        suppressed = [name for name, m in metrics.items() if m.suppressed]
        if suppressed:
            limitations.append(
                f"{len(suppressed)} of {len(metrics)} metrics suppressed for small samples"
            )

        first, last = stats.filed_between(cases)
        if first and last:
            patterns.append(f"Cases filed {first.isoformat()} to {last.isoformat()}")
        else:
            patterns.append(f"Analysis covers cases filed from {window.label}")
        return patterns, limitations

    # ── Profile path ─────────────────────────────────────────────────────────

    def _profile_record(self, judge: JudgeDB, window: AnalysisWindow) -> AnalyticsRecord:
        court_name = (judge.court_name or "").lower()
        home = any(marker in court_name for marker in HOME_REGION_MARKERS) or (
            (judge.court_id or "").lower().startswith(HOME_REGION_COURT_PREFIXES)
        )
        shift = REGION_ADJUSTMENT if home else 0

        metrics = {
            name: MetricResult(
                value=PROFILE_DEFAULTS.get(name, 50) + shift * PROFILE_REGION_SHIFT.get(name, 0),
                confidence=0.0,
                sample_size=0,
                suppressed=True,
            )
            for name in self.config.metrics
        }
        return AnalyticsRecord(
            judge_id=judge.courtlistener_id,
            metrics=metrics,
            overall_confidence=0.0,
            total_cases_analyzed=0,
            analysis_quality=AnalysisQuality.PROFILE_BASED,
            generated_at=self._clock(),
            model_used="profile_based",
            notable_patterns=[
                "Analysis based on judicial profile and jurisdiction patterns",
                f"No case data available within {window.lookback_years}-year window "
                f"({window.label})",
            ],
            data_limitations=[
                "No case data available",
                "Estimates based on regional and court type patterns",
            ],
            window=window,
        )

    # ── Augmentation ─────────────────────────────────────────────────────────

    def _should_augment(self, record: AnalyticsRecord) -> bool:
        return (
            self.augmenter.is_enabled()
            and record.total_cases_analyzed >= self.config.augmentation_min_cases
        )

    async def _augment(self, record: AnalyticsRecord, cases: list[CaseRecord]) -> AnalyticsRecord:
        try:
            extra = await asyncio.wait_for(
                self.augmenter.augment(record, cases),
                timeout=self.config.augmentation_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Augmentation timed out after {self.config.augmentation_timeout}s "
                f"for judge {record.judge_id}, returning statistical analytics"
            )
            return record
        except Exception as e:
            logger.warning(
                f"Augmentation failed for judge {record.judge_id}, "
                f"returning statistical analytics: {e}"
            )
            return record

        patterns = list(dict.fromkeys(record.notable_patterns + extra.notable_patterns))
        limitations = list(dict.fromkeys(record.data_limitations + extra.data_limitations))
        return record.model_copy(
            update={
                "narrative": extra.narrative,
                "notable_patterns": patterns,
                "data_limitations": limitations,
                "model_used": f"statistical+{self.augmenter.model_name}",
            }
        )
