"""
Analytics configuration - metric thresholds and case classification keywords.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from judgeindex.settings import Settings


@dataclass(frozen=True)
class MetricConfig:
    """Per-metric gating: below min_sample_size a metric is suppressed."""

    min_sample_size: int
    weight: float = 1.0
    label: str = ""


METRICS: Mapping[str, MetricConfig] = MappingProxyType(
    {
        "civil_plaintiff_favor": MetricConfig(30, 1.0, "Civil plaintiff favor"),
        "family_custody_mother": MetricConfig(20, 0.8, "Custody awarded to mother"),
        "family_alimony_favorable": MetricConfig(20, 0.6, "Alimony awarded"),
        "contract_enforcement_rate": MetricConfig(25, 1.0, "Contract enforcement"),
        "criminal_sentencing_severity": MetricConfig(30, 1.0, "Sentencing severity"),
        "criminal_plea_acceptance": MetricConfig(20, 0.8, "Plea acceptance"),
        "bail_release_rate": MetricConfig(20, 0.8, "Bail release"),
        "appeal_reversal_rate": MetricConfig(15, 1.0, "Appeal reversal"),
        "settlement_encouragement_rate": MetricConfig(20, 0.6, "Settlement encouragement"),
        "motion_grant_rate": MetricConfig(30, 1.0, "Motion grant rate"),
    }
)

# Case-type keywords deciding which metric subsets a case belongs to
CIVIL_TYPES: tuple[str, ...] = ("civil", "tort", "personal injury")
CUSTODY_TYPES: tuple[str, ...] = ("custody", "family")
ALIMONY_TYPES: tuple[str, ...] = ("divorce", "family")
CONTRACT_TYPES: tuple[str, ...] = ("contract", "breach")
CRIMINAL_TYPES: tuple[str, ...] = ("criminal", "felony", "misdemeanor")
APPEAL_TYPES: tuple[str, ...] = ("appeal",)
SETTLEMENT_TYPES: tuple[str, ...] = ("civil", "contract", "tort")

BAIL_MENTIONS: tuple[str, ...] = (
    "bail",
    "pretrial release",
    "pre-trial release",
    "released on own recognizance",
)
BAIL_OUTCOME_MENTIONS: tuple[str, ...] = ("bail", "release", "detained", "remand")

# Outcome keywords marking the "success" side of each metric
PLAINTIFF_WIN: tuple[str, ...] = ("plaintiff", "awarded")
CUSTODY_MOTHER: tuple[str, ...] = ("custody to mother", "maternal custody")
ALIMONY_AWARDED: tuple[str, ...] = ("alimony", "spousal support")
CONTRACT_ENFORCED: tuple[str, ...] = ("enforced", "breach found")
STRICT_SENTENCE: tuple[str, ...] = ("prison", "years")
PLEA_ACCEPTED: tuple[str, ...] = ("plea accepted", "guilty plea")
BAIL_GRANTED: tuple[str, ...] = ("bail granted", "released")
REVERSED: tuple[str, ...] = ("reversed", "overturned")
SETTLED: tuple[str, ...] = ("settlement reached", "parties settled", "settlement conference")
MOTION_GRANTED: tuple[str, ...] = ("granted",)

# Court names and CourtListener court id prefixes (cal, calctapp, ...) treated
# as the home region for profile-based estimates
HOME_REGION_MARKERS: tuple[str, ...] = ("california",)
HOME_REGION_COURT_PREFIXES: tuple[str, ...] = ("cal",)


@dataclass(frozen=True)
class AnalyticsConfig:
    """Engine configuration, built once at startup and passed by value."""

    lookback_years: int = 5
    case_limit: int = 1000
    ready_threshold: int = 500
    augmentation_min_cases: int = 500
    augmentation_timeout: float = 45.0
    metrics: Mapping[str, MetricConfig] = field(default_factory=lambda: METRICS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnalyticsConfig":
        return cls(
            lookback_years=settings.analytics_lookback_years,
            case_limit=settings.analytics_case_limit,
            ready_threshold=settings.analytics_ready_threshold,
            augmentation_min_cases=settings.augmentation_min_cases,
            augmentation_timeout=settings.augmentation_timeout,
        )
