"""
ledger_allocation -- resumable payment allocation engine.

Reconciles parsed payment records against the debtor ledger page by page,
credits agent performance, records weekly payment history, and checkpoints
progress so interrupted runs resume where they stopped.

Entry point: ``AllocationOrchestrator.from_session(session)``.
"""

from ledger_allocation.domain.types import (
    AllocationErrorEntry,
    AllocationProgress,
    AllocationStats,
    AllocationStatus,
    StatusMarkPolicy,
    UnmatchedAccountPolicy,
)
from ledger_allocation.orchestrator import AllocationOrchestrator

__all__ = [
    "AllocationErrorEntry",
    "AllocationOrchestrator",
    "AllocationProgress",
    "AllocationStats",
    "AllocationStatus",
    "StatusMarkPolicy",
    "UnmatchedAccountPolicy",
]
