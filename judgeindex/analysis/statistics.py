"""
Case classification and aggregate statistics.

classify() maps one case onto the metric subsets it belongs to and whether it
lands on the metric's "success" side. Rules are keyword matches over the case
type, outcome and summary, lower-cased.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable

from judgeindex.analysis import config as cfg
from judgeindex.analysis.types import BiasIndicators, CaseRecord


@dataclass
class MetricTally:
    total: int = 0
    hits: int = 0

    def add(self, hit: bool) -> None:
        self.total += 1
        if hit:
            self.hits += 1

    @property
    def ratio(self) -> float | None:
        if self.total == 0:
            return None
        return self.hits / self.total


def _has(text: str, words: Iterable[str]) -> bool:
    return any(word in text for word in words)


def classify(case: CaseRecord) -> dict[str, bool]:
    """Metric name -> success flag, for every metric subset the case belongs to."""
    case_type = (case.case_type or "").lower()
    outcome = (case.outcome or "").lower()
    summary = (case.summary or "").lower()
    status = (case.status or "").lower()
    result: dict[str, bool] = {}

    if _has(case_type, cfg.CIVIL_TYPES):
        result["civil_plaintiff_favor"] = (
            _has(outcome, cfg.PLAINTIFF_WIN) or "in favor of plaintiff" in summary
        )

    if _has(case_type, cfg.CUSTODY_TYPES) or "child custody" in summary:
        result["family_custody_mother"] = "mother" in outcome or _has(summary, cfg.CUSTODY_MOTHER)

    if (
        _has(case_type, cfg.ALIMONY_TYPES)
        or "alimony" in summary
        or "spousal support" in summary
    ):
        result["family_alimony_favorable"] = (
            _has(outcome, cfg.ALIMONY_AWARDED) or "awarded spousal" in summary
        )

    if _has(case_type, cfg.CONTRACT_TYPES) or "contract dispute" in summary:
        result["contract_enforcement_rate"] = (
            _has(outcome, cfg.CONTRACT_ENFORCED)
            or "contract upheld" in summary
            or ("dismissed" not in outcome and status == "decided")
        )

    if _has(case_type, cfg.CRIMINAL_TYPES):
        result["criminal_sentencing_severity"] = (
            _has(outcome, cfg.STRICT_SENTENCE) or "sentenced to" in summary
        )

    if "plea" in summary or "plea" in outcome:
        result["criminal_plea_acceptance"] = (
            _has(outcome, cfg.PLEA_ACCEPTED) or "plea approved" in summary
        )

    if _has(summary, cfg.BAIL_MENTIONS) or _has(outcome, cfg.BAIL_OUTCOME_MENTIONS):
        result["bail_release_rate"] = (
            _has(outcome, cfg.BAIL_GRANTED)
            or "release granted" in summary
            or "bail set" in summary
            or ("remanded" not in outcome and "detained" not in outcome)
        )

    if _has(case_type, cfg.APPEAL_TYPES) or "appeal" in summary or "appeal" in outcome:
        result["appeal_reversal_rate"] = (
            _has(outcome, cfg.REVERSED)
            or "judgment reversed" in summary
            or "decision overturned" in summary
        )

    if _has(case_type, cfg.SETTLEMENT_TYPES) and ("settlement" in summary or "settlement" in outcome):
        result["settlement_encouragement_rate"] = "settled" in outcome or _has(summary, cfg.SETTLED)

    if "motion" in summary or "motion" in outcome:
        result["motion_grant_rate"] = (
            _has(outcome, cfg.MOTION_GRANTED)
            or "granted the motion" in summary
            or "motion approved" in summary
        )

    return result


def tally(cases: Iterable[CaseRecord], metric_names: Iterable[str]) -> dict[str, MetricTally]:
    tallies = {name: MetricTally() for name in metric_names}
    for case in cases:
        for name, hit in classify(case).items():
            if name in tallies:
                tallies[name].add(hit)
    return tallies


# ── Outcome patterns and bias indicators ──────────────────────────────────────


def normalize_outcome(value: str | None) -> str:
    """settled | dismissed | judgment | other"""
    text = (value or "").lower()
    if "settled" in text or "compromise" in text:
        return "settled"
    if "dismiss" in text:
        return "dismissed"
    if "judgment" in text or "granted" in text:
        return "judgment"
    return "other"


def _duration_days(case: CaseRecord) -> float | None:
    if case.filing_date is None or case.decision_date is None:
        return None
    return float(abs((case.decision_date - case.filing_date).days))


def average_duration(cases: list[CaseRecord]) -> float:
    durations = [d for d in (_duration_days(c) for c in cases) if d is not None]
    return sum(durations) / len(durations) if durations else 0.0


def settlement_rate(cases: list[CaseRecord]) -> float:
    if not cases:
        return 0.0
    settled = sum(1 for c in cases if normalize_outcome(c.outcome or c.status) == "settled")
    return settled / len(cases)


def case_type_groups(cases: list[CaseRecord]) -> dict[str, list[CaseRecord]]:
    groups: dict[str, list[CaseRecord]] = {}
    for case in cases:
        groups.setdefault(case.case_type or "Other", []).append(case)
    return groups


def bias_indicators(cases: list[CaseRecord]) -> BiasIndicators | None:
    """Consistency, speed, settlement preference, risk tolerance, predictability.

    Predictability is damped for small datasets (x0.5 under 50 cases, x0.8
    under 500).
    """
    if not cases:
        return None

    groups = case_type_groups(cases)
    overall_settlement = settlement_rate(cases)
    rates = [settlement_rate(group) for group in groups.values()]
    variance = sum((rate - overall_settlement) ** 2 for rate in rates) / len(rates)

    consistency = 100 - variance * 100
    varied = overall_settlement not in (0.0, 1.0)
    if (variance == 0 and varied) or (variance > 0 and consistency >= 100):
        consistency = 99.9
    consistency = max(0.0, min(100.0, consistency))

    speed_divisor = max(1.0, average_duration(cases) or 1.0)
    speed = max(0.0, min(100.0, 100 - speed_divisor / 180 * 100))

    settlement_preference = (overall_settlement - 0.5) * 100

    high_value_types = 0
    for group in groups.values():
        values = [c.case_value for c in group if c.case_value is not None]
        if values and sum(values) / len(values) > 100_000:
            high_value_types += 1
    risk_tolerance = max(0.0, min(100.0, high_value_types / max(1, len(groups)) * 100))

    predictability = consistency
    if len(cases) < 50:
        predictability *= 0.5
    elif len(cases) < 500:
        predictability *= 0.8

    return BiasIndicators(
        consistency_score=round(consistency, 1),
        speed_score=round(speed, 1),
        settlement_preference=round(settlement_preference, 1),
        risk_tolerance=round(risk_tolerance, 1),
        predictability_score=round(max(0.0, min(100.0, predictability)), 1),
    )


def share(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


def filed_between(cases: list[CaseRecord]) -> tuple[date | None, date | None]:
    dates = [c.filing_date for c in cases if c.filing_date is not None]
    if not dates:
        return None, None
    return min(dates), max(dates)
