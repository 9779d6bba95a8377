"""
Sync pipeline types.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class SyncPhase(str, Enum):
    """Ingestion phases, in pipeline order."""

    DISCOVERY = "discovery"
    POSITIONS = "positions"
    DETAILS = "details"
    OPINIONS = "opinions"
    DOCKETS = "dockets"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return PHASE_ORDER.index(self)

    def next(self) -> "SyncPhase":
        if self is SyncPhase.COMPLETE:
            return self
        return PHASE_ORDER[self.rank + 1]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SyncPhase):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, SyncPhase):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, SyncPhase):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, SyncPhase):
            return NotImplemented
        return self.rank >= other.rank


PHASE_ORDER: list[SyncPhase] = [
    SyncPhase.DISCOVERY,
    SyncPhase.POSITIONS,
    SyncPhase.DETAILS,
    SyncPhase.OPINIONS,
    SyncPhase.DOCKETS,
    SyncPhase.COMPLETE,
]

# Phases that still have provider work to do
PENDING_PHASES: list[SyncPhase] = PHASE_ORDER[:-1]


class SyncStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"  # stopped early on rate limit, open circuit or stop()
    FAILED = "failed"


class SyncProgress(BaseModel):
    """Read model of a sync_progress row."""

    model_config = ConfigDict(from_attributes=True)

    entity_id: str
    phase: SyncPhase
    has_positions: bool = False
    has_education: bool = False
    has_political_affiliations: bool = False
    opinions_count: int = 0
    dockets_count: int = 0
    total_cases_count: int = 0
    is_analytics_ready: bool = False
    error_count: int = 0
    last_error: str | None = None
    last_error_at: datetime | None = None
    positions_synced_at: datetime | None = None
    details_synced_at: datetime | None = None
    opinions_synced_at: datetime | None = None
    dockets_synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class SyncOptions:
    """Options for one orchestrator run."""

    jurisdiction: str | None = None
    max_entities: int = 50
    max_new_entities: int = 25
    phases: list[SyncPhase] = field(default_factory=lambda: list(PENDING_PHASES))
    discover_courts: bool = True
    discover_judges: bool = True
    retry_errors_only: bool = False


@dataclass
class SyncRunSummary:
    """Outcome of one orchestrator run."""

    status: SyncStatus = SyncStatus.COMPLETED
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: datetime | None = None
    courts_synced: int = 0
    entities_discovered: int = 0
    entities_processed: int = 0
    entities_updated: int = 0
    errors: list[str] = field(default_factory=list)
    stop_reason: str | None = None
    rate_limit_remaining: int | None = None

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.utcnow()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 2),
            "courts_synced": self.courts_synced,
            "entities_discovered": self.entities_discovered,
            "entities_processed": self.entities_processed,
            "entities_updated": self.entities_updated,
            "errors": self.errors,
            "stop_reason": self.stop_reason,
            "rate_limit_remaining": self.rate_limit_remaining,
        }
