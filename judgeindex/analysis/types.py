"""
Analytics result types using Pydantic models.
"""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class AnalysisQuality(str, Enum):
    INSUFFICIENT = "insufficient"
    PRELIMINARY = "preliminary"
    MODERATE = "moderate"
    HIGH = "high"
    PROFILE_BASED = "profile_based"


class CaseRecord(BaseModel):
    """The case fields analytics reads."""

    model_config = ConfigDict(from_attributes=True)

    case_name: str = ""
    case_type: str | None = None
    outcome: str | None = None
    status: str | None = None
    summary: str | None = None
    case_value: float | None = None
    filing_date: date | None = None
    decision_date: date | None = None


class AnalysisWindow(BaseModel):
    lookback_years: int
    start_year: int
    end_year: int

    @property
    def label(self) -> str:
        if self.start_year == self.end_year:
            return str(self.start_year)
        return f"{self.start_year}-{self.end_year}"


class MetricResult(BaseModel):
    """One behavioural metric. value is None when no case qualified."""

    value: float | None = None
    confidence: float = 0.0
    sample_size: int = 0
    suppressed: bool = True


class BiasIndicators(BaseModel):
    consistency_score: float
    speed_score: float
    settlement_preference: float
    risk_tolerance: float
    predictability_score: float


class AnalyticsRecord(BaseModel):
    """Confidence-scored analytics for one judge."""

    judge_id: str
    metrics: dict[str, MetricResult] = Field(default_factory=dict)
    overall_confidence: float = 0.0
    total_cases_analyzed: int = 0
    analysis_quality: AnalysisQuality
    generated_at: datetime
    model_used: str = "statistical"
    notable_patterns: list[str] = Field(default_factory=list)
    data_limitations: list[str] = Field(default_factory=list)
    narrative: str | None = None
    indicators: BiasIndicators | None = None
    window: AnalysisWindow | None = None
