"""Allocation stage services, runner, resumer and per-file guard."""

from ledger_allocation.services.agent_performance import AgentPerformanceAccumulator
from ledger_allocation.services.debtor_matcher import DebtorMatcher
from ledger_allocation.services.file_guard import AllocationGuard, AllocationLease
from ledger_allocation.services.ledger_updater import LedgerUpdater
from ledger_allocation.services.payment_history import PaymentHistoryRecorder
from ledger_allocation.services.record_fetcher import RecordFetcher
from ledger_allocation.services.resumer import AllocationResumer
from ledger_allocation.services.retry import TRANSIENT_DB_ERRORS, Retrier, RetryPolicy
from ledger_allocation.services.runner import AllocationRunner
from ledger_allocation.services.status_marker import StatusMarker

__all__ = [
    "AgentPerformanceAccumulator",
    "AllocationGuard",
    "AllocationLease",
    "AllocationResumer",
    "AllocationRunner",
    "DebtorMatcher",
    "LedgerUpdater",
    "PaymentHistoryRecorder",
    "RecordFetcher",
    "Retrier",
    "RetryPolicy",
    "StatusMarker",
    "TRANSIENT_DB_ERRORS",
]
