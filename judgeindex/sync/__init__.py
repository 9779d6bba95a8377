"""
Judge ingestion pipeline.

Provides:
- SyncProgressStore: durable per-judge phase progress
- SyncOrchestrator: resumable, rate-limited phase runner
- DataQualityValidator: repairs progress rows that disagree with stored data
"""

from judgeindex.sync.orchestrator import SyncOrchestrator
from judgeindex.sync.progress import SyncProgressStore
from judgeindex.sync.quality import DataQualityValidator, ValidationReport
from judgeindex.sync.types import (
    PENDING_PHASES,
    SyncOptions,
    SyncPhase,
    SyncProgress,
    SyncRunSummary,
    SyncStatus,
)

__all__ = [
    "SyncOrchestrator",
    "SyncProgressStore",
    "DataQualityValidator",
    "ValidationReport",
    "PENDING_PHASES",
    "SyncOptions",
    "SyncPhase",
    "SyncProgress",
    "SyncRunSummary",
    "SyncStatus",
]
