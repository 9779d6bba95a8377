"""
Database models
SQLAlchemy 2.0+ declarative mapping
"""

from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models"""

    pass


class CourtDB(Base):
    """Courts discovered from the provider"""

    __tablename__ = "courts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    courtlistener_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    short_name: Mapped[str] = mapped_column(String(255), default="")
    jurisdiction: Mapped[str] = mapped_column(String(16), default="", index=True)
    court_type: Mapped[str] = mapped_column(String(64), default="")
    url: Mapped[str] = mapped_column(String(1000), default="")
    in_use: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Court(id={self.courtlistener_id}, name={self.name})>"


class JudgeDB(Base):
    """Judges (provider "people")"""

    __tablename__ = "judges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    courtlistener_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    court_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    court_name: Mapped[str] = mapped_column(String(500), default="")
    jurisdiction: Mapped[str] = mapped_column(String(16), default="", index=True)
    gender: Mapped[str] = mapped_column(String(16), default="")
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    appointed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    appointer: Mapped[str] = mapped_column(String(500), default="")
    political_party: Mapped[str] = mapped_column(String(64), default="")
    education_summary: Mapped[str] = mapped_column(Text, default="")
    total_cases: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Judge(id={self.courtlistener_id}, name={self.name})>"


class JudgePositionDB(Base):
    """Judicial appointments"""

    __tablename__ = "judge_positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    courtlistener_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    judge_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("judges.courtlistener_id"), nullable=False, index=True
    )
    court_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    position_type: Mapped[str] = mapped_column(String(64), default="")
    appointer: Mapped[str] = mapped_column(String(500), default="")
    how_selected: Mapped[str] = mapped_column(String(64), default="")
    date_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_termination: Mapped[date | None] = mapped_column(Date, nullable=True)


class JudgeEducationDB(Base):
    """Education records"""

    __tablename__ = "judge_educations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    courtlistener_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    judge_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("judges.courtlistener_id"), nullable=False, index=True
    )
    school: Mapped[str] = mapped_column(String(500), default="")
    degree_level: Mapped[str] = mapped_column(String(32), default="")
    degree_detail: Mapped[str] = mapped_column(String(255), default="")
    degree_year: Mapped[int | None] = mapped_column(Integer, nullable=True)


class JudgePoliticalAffiliationDB(Base):
    """Political affiliations"""

    __tablename__ = "judge_political_affiliations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    courtlistener_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    judge_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("judges.courtlistener_id"), nullable=False, index=True
    )
    political_party: Mapped[str] = mapped_column(String(64), default="")
    source: Mapped[str] = mapped_column(String(64), default="")
    date_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_end: Mapped[date | None] = mapped_column(Date, nullable=True)


class CaseDB(Base):
    """Cases ingested from opinion clusters and dockets"""

    __tablename__ = "cases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # "opinion:<id>" or "docket:<id>"; a panel opinion is stored once per judge
    external_id: Mapped[str] = mapped_column(String(96), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    judge_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("judges.courtlistener_id"), nullable=False, index=True
    )
    court_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    case_name: Mapped[str] = mapped_column(String(1000), default="")
    case_number: Mapped[str] = mapped_column(String(255), default="")
    case_type: Mapped[str] = mapped_column(String(255), default="")
    status: Mapped[str] = mapped_column(String(64), default="")
    outcome: Mapped[str] = mapped_column(Text, default="")
    summary: Mapped[str] = mapped_column(Text, default="")
    case_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    filing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    decision_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("external_id", "judge_id", name="uq_cases_external_judge"),
        Index("idx_cases_judge_filing", "judge_id", "filing_date"),
        Index("idx_cases_judge_source", "judge_id", "source"),
    )

    def __repr__(self) -> str:
        return f"<Case(id={self.external_id}, judge={self.judge_id})>"


class SyncProgressDB(Base):
    """Per-judge ingestion progress"""

    __tablename__ = "sync_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    phase: Mapped[str] = mapped_column(
        String(32), default="discovery", nullable=False, index=True
    )
    has_positions: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_education: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_political_affiliations: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    opinions_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    dockets_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_cases_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_analytics_ready: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, index=True
    )
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    positions_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    details_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    opinions_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    dockets_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (Index("idx_sync_progress_phase_updated", "phase", "updated_at"),)

    def __repr__(self) -> str:
        return f"<SyncProgress(entity={self.entity_id}, phase={self.phase})>"


class ProviderRateLimitDB(Base):
    """Shared hourly request budget per provider"""

    __tablename__ = "provider_rate_limits"

    provider: Mapped[str] = mapped_column(String(64), primary_key=True)
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    request_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    limit: Mapped[int] = mapped_column(Integer, nullable=False)
    buffer_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    blocked_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_request_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class CacheEntryDB(Base):
    """Distributed key/value cache shared by every worker"""

    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    cached_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class JudgeAnalyticsCacheDB(Base):
    """Durable analytics record per judge (no TTL)"""

    __tablename__ = "judge_analytics_cache"

    judge_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    analytics_json: Mapped[str] = mapped_column(Text, nullable=False)
    total_cases_analyzed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    analysis_quality: Mapped[str] = mapped_column(String(32), default="", index=True)
    generated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class CourtAnalyticsSummaryDB(Base):
    """Precomputed per-court aggregate over judge analytics"""

    __tablename__ = "court_analytics_summary"

    court_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    judges_with_analytics: Mapped[int] = mapped_column(Integer, default=0)
    total_cases_analyzed: Mapped[int] = mapped_column(Integer, default=0)
    avg_overall_confidence: Mapped[float] = mapped_column(Float, default=0.0)
    metric_averages_json: Mapped[str] = mapped_column(Text, default="{}")
    refreshed_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
