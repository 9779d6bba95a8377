"""
Judge analytics: keyword-classified metrics, confidence scoring and bias indicators.
"""

from judgeindex.analysis.config import METRICS, AnalyticsConfig, MetricConfig
from judgeindex.analysis.engine import AnalyticsEngine
from judgeindex.analysis.types import (
    AnalysisQuality,
    AnalyticsRecord,
    BiasIndicators,
    CaseRecord,
    MetricResult,
)

__all__ = [
    "METRICS",
    "AnalyticsConfig",
    "MetricConfig",
    "AnalyticsEngine",
    "AnalysisQuality",
    "AnalyticsRecord",
    "BiasIndicators",
    "CaseRecord",
    "MetricResult",
]
