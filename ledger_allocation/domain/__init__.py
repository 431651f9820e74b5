"""Pure allocation domain: progress values, deduplication, rate estimation."""

from ledger_allocation.domain.dedup import deduplicate_latest
from ledger_allocation.domain.rate import ProgressRateEstimator, RateEstimate, format_eta
from ledger_allocation.domain.types import (
    AgentPerformanceResult,
    AllocationErrorEntry,
    AllocationProgress,
    AllocationStats,
    AllocationStatus,
    AllocationTally,
    HistoryResult,
    LedgerUpdateResult,
    StatusBucket,
    StatusMarkPolicy,
    StatusMarkResult,
    UnmatchedAccountPolicy,
)

__all__ = [
    "AgentPerformanceResult",
    "AllocationErrorEntry",
    "AllocationProgress",
    "AllocationStats",
    "AllocationStatus",
    "AllocationTally",
    "HistoryResult",
    "LedgerUpdateResult",
    "ProgressRateEstimator",
    "RateEstimate",
    "StatusBucket",
    "StatusMarkPolicy",
    "StatusMarkResult",
    "UnmatchedAccountPolicy",
    "deduplicate_latest",
    "format_eta",
]
