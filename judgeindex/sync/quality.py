"""
DataQualityValidator - Finds progress rows that disagree with stored data.

Issues found and how they are repaired:
- orphaned_progress: progress row without a judge row, reset to discovery
- missing_positions: past the positions phase with no stored positions,
  reset to positions
- count_mismatch: recorded case counts differ from the cases table, counts
  are corrected and, if the judge claims completion, reset to opinions
- stale_data: complete but dockets not refreshed within max_age_days,
  reset to opinions so the next run pulls new cases
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from judgeindex.datastore.repositories import (
    CaseRepository,
    JudgeDetailsRepository,
    JudgeRepository,
)
from judgeindex.sync.progress import SyncProgressStore
from judgeindex.sync.types import SyncPhase, SyncProgress


class IssueType(str, Enum):
    ORPHANED_PROGRESS = "orphaned_progress"
    MISSING_POSITIONS = "missing_positions"
    COUNT_MISMATCH = "count_mismatch"
    STALE_DATA = "stale_data"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class DataQualityIssue:
    entity_id: str
    issue: IssueType
    severity: Severity
    detail: str
    reset_to: SyncPhase | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "issue": self.issue.value,
            "severity": self.severity.value,
            "detail": self.detail,
            "reset_to": self.reset_to.value if self.reset_to else None,
        }


@dataclass
class ValidationReport:
    checked: int = 0
    issues: list[DataQualityIssue] = field(default_factory=list)
    fixed: int = 0
    generated_at: datetime = field(default_factory=datetime.utcnow)

    def counts_by_type(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for issue in self.issues:
            counts[issue.issue.value] = counts.get(issue.issue.value, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "fixed": self.fixed,
            "issues_by_type": self.counts_by_type(),
            "issues": [issue.to_dict() for issue in self.issues],
            "generated_at": self.generated_at.isoformat(),
        }


class DataQualityValidator:
    """
    Usage:
        validator = DataQualityValidator(get_session_factory(), store)
        report = await validator.run(fix=True)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: SyncProgressStore,
        max_age_days: int = 30,
    ):
        self._session_factory = session_factory
        self.store = store
        self.max_age = timedelta(days=max_age_days)

    async def run(self, fix: bool = True) -> ValidationReport:
        report = ValidationReport()
        for progress in await self.store.list_all():
            report.checked += 1
            issues = await self._check(progress)
            report.issues.extend(issues)
            if fix and issues:
                await self._repair(progress, issues)
                report.fixed += 1

        if report.issues:
            logger.warning(
                f"Data quality: {len(report.issues)} issues in {report.checked} entities "
                f"{report.counts_by_type()}"
            )
        else:
            logger.info(f"Data quality: {report.checked} entities consistent")
        return report

    async def _check(self, progress: SyncProgress) -> list[DataQualityIssue]:
        entity_id = progress.entity_id
        async with self._session_factory() as session:
            judge_exists = await JudgeRepository(session).exists(entity_id)
            positions = await JudgeDetailsRepository(session).count_positions(entity_id)
            cases = CaseRepository(session)
            opinions = await cases.count_for_judge(entity_id, source="opinion")
            dockets = await cases.count_for_judge(entity_id, source="docket")

        if not judge_exists:
            return [
                DataQualityIssue(
                    entity_id,
                    IssueType.ORPHANED_PROGRESS,
                    Severity.CRITICAL,
                    "progress row has no judge record",
                    reset_to=SyncPhase.DISCOVERY,
                )
            ]

        issues: list[DataQualityIssue] = []
        if progress.phase > SyncPhase.POSITIONS and progress.has_positions and positions == 0:
            issues.append(
                DataQualityIssue(
                    entity_id,
                    IssueType.MISSING_POSITIONS,
                    Severity.HIGH,
                    "marked as having positions but none are stored",
                    reset_to=SyncPhase.POSITIONS,
                )
            )

        if progress.opinions_count != opinions or progress.dockets_count != dockets:
            issues.append(
                DataQualityIssue(
                    entity_id,
                    IssueType.COUNT_MISMATCH,
                    Severity.MEDIUM,
                    f"recorded {progress.opinions_count}/{progress.dockets_count} "
                    f"opinions/dockets, stored {opinions}/{dockets}",
                    reset_to=SyncPhase.OPINIONS if progress.phase == SyncPhase.COMPLETE else None,
                )
            )

        synced_at = progress.dockets_synced_at
        if (
            progress.phase == SyncPhase.COMPLETE
            and synced_at is not None
            and datetime.utcnow() - synced_at > self.max_age
        ):
            issues.append(
                DataQualityIssue(
                    entity_id,
                    IssueType.STALE_DATA,
                    Severity.LOW,
                    f"cases last refreshed {synced_at.date().isoformat()}",
                    reset_to=SyncPhase.OPINIONS,
                )
            )
        return issues

    async def _repair(self, progress: SyncProgress, issues: list[DataQualityIssue]) -> None:
        entity_id = progress.entity_id
        if any(i.issue == IssueType.COUNT_MISMATCH for i in issues):
            async with self._session_factory() as session:
                cases = CaseRepository(session)
                opinions = await cases.count_for_judge(entity_id, source="opinion")
                dockets = await cases.count_for_judge(entity_id, source="docket")
            await self.store.update_case_counts(entity_id, opinions, dockets)

        targets = [i.reset_to for i in issues if i.reset_to is not None]
        if targets:
            earliest = min(targets, key=lambda p: p.rank)
            reasons = ", ".join(i.issue.value for i in issues)
            await self.store.soft_reset(entity_id, earliest, reason=f"({reasons})")
