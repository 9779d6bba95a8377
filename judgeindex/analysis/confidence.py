"""
Confidence scoring.

Per-metric confidence is 0 below a hard floor of cases, then rises along a
saturating curve that reaches 95% of the ceiling when the sample equals the
metric's minimum size:

    confidence = ceiling * (1 - exp(-ln(20) * n / min_sample_size))

Metrics under their minimum are suppressed and capped at SUPPRESSED_CEILING.
Overall confidence is the weighted mean of metric confidences, capped by the
case-volume tier of the whole dataset.
"""

import math
from typing import Mapping

from judgeindex.analysis.config import MetricConfig
from judgeindex.analysis.types import AnalysisQuality, MetricResult

HARD_FLOOR = 3
CEILING = 95.0
SUPPRESSED_CEILING = 40.0
_K = math.log(20)

# (minimum cases, cap) from the largest tier down
VOLUME_TIERS: tuple[tuple[int, float], ...] = ((1000, 93.0), (750, 85.0), (500, 75.0))
LIMITED_BASE = 40.0
LIMITED_SPAN = 29.0


def metric_confidence(sample_size: int, min_sample_size: int) -> tuple[float, bool]:
    """Return (confidence 0-100, suppressed)."""
    if sample_size < HARD_FLOOR:
        return 0.0, True
    threshold = max(1, min_sample_size)
    confidence = CEILING * (1 - math.exp(-_K * sample_size / threshold))
    suppressed = sample_size < threshold
    if suppressed:
        confidence = min(confidence, SUPPRESSED_CEILING)
    return round(confidence, 1), suppressed


def volume_cap(total_cases: int) -> float:
    """Highest overall confidence a dataset of this size supports."""
    for minimum, cap in VOLUME_TIERS:
        if total_cases >= minimum:
            return cap
    if total_cases < HARD_FLOOR:
        return 0.0
    return round(min(69.0, LIMITED_BASE + total_cases / 500 * LIMITED_SPAN), 1)


def overall_confidence(
    metrics: Mapping[str, MetricResult],
    config: Mapping[str, MetricConfig],
    total_cases: int,
) -> float:
    weighted = 0.0
    weight_sum = 0.0
    for name, result in metrics.items():
        if result.sample_size < HARD_FLOOR:
            continue
        weight = config[name].weight * math.sqrt(result.sample_size)
        weighted += result.confidence * weight
        weight_sum += weight
    if weight_sum == 0:
        return 0.0
    return round(min(weighted / weight_sum, volume_cap(total_cases)), 1)


def analysis_quality(total_cases: int, overall: float) -> AnalysisQuality:
    if total_cases < 50 or overall < 40:
        return AnalysisQuality.INSUFFICIENT
    if total_cases < 500 or overall < 60:
        return AnalysisQuality.PRELIMINARY
    if total_cases < 1000 or overall < 80:
        return AnalysisQuality.MODERATE
    return AnalysisQuality.HIGH
