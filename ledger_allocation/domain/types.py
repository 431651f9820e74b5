"""
ledger_allocation.domain.types -- Pure frozen dataclasses for the allocation engine.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - Progress values are immutable.  The runner and the resumer build new
      values with ``absorb()`` / ``combine()`` instead of mutating shared
      counters.
    - Counters only grow.  A snapshot relayed after another never reports a
      smaller ``total_processed``, ``accounts_updated``, ``accounts_created``
      or ``failed_allocations``.
    - The error list is bounded by ``max_errors``; overflow is counted in
      ``errors_dropped`` rather than silently lost.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.domain.dtos import DebtorAccount

# =============================================================================
# Enums
# =============================================================================


class AllocationStatus(str, Enum):
    """Lifecycle of a single allocation run."""

    RUNNING = "running"  # Pages still being processed
    PAUSED = "paused"  # Time budget or circuit breaker stopped the run
    ABORTED = "aborted"  # Caller cancelled the run
    COMPLETE = "complete"  # No pending records remain


class UnmatchedAccountPolicy(str, Enum):
    """What to do with a record whose account number has no debtor row."""

    REJECT_UNMATCHED = "reject-unmatched"
    CREATE_WITH_DEFAULTS = "create-with-defaults"


class StatusMarkPolicy(str, Enum):
    """Which records a page marks as processed."""

    MARK_ALL_ATTEMPTED = "mark-all-attempted"
    MARK_SUCCESSFUL_ONLY = "mark-successful-only"


# =============================================================================
# Errors and tallies
# =============================================================================


@dataclass(frozen=True)
class AllocationErrorEntry:
    """One per-account problem reported in a progress snapshot."""

    account_number: str | None
    error: str
    code: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_number": self.account_number,
            "error": self.error,
            "code": self.code,
        }


def bounded_errors(
    existing: tuple[AllocationErrorEntry, ...],
    incoming: tuple[AllocationErrorEntry, ...],
    max_errors: int,
) -> tuple[tuple[AllocationErrorEntry, ...], int]:
    """Append ``incoming`` to ``existing`` keeping at most ``max_errors``.

    Returns the kept entries and how many were dropped.
    """
    room = max(max_errors - len(existing), 0)
    kept = existing + incoming[:room]
    return kept, len(incoming) - min(room, len(incoming))


@dataclass(frozen=True)
class AllocationTally:
    """Counters contributed by one stage or one page."""

    total_processed: int = 0
    accounts_updated: int = 0
    accounts_created: int = 0
    failed_allocations: int = 0
    errors: tuple[AllocationErrorEntry, ...] = ()

    def plus(self, other: AllocationTally) -> AllocationTally:
        return AllocationTally(
            total_processed=self.total_processed + other.total_processed,
            accounts_updated=self.accounts_updated + other.accounts_updated,
            accounts_created=self.accounts_created + other.accounts_created,
            failed_allocations=self.failed_allocations + other.failed_allocations,
            errors=self.errors + other.errors,
        )


# =============================================================================
# Progress
# =============================================================================


@dataclass(frozen=True)
class AllocationProgress:
    """Snapshot of an allocation run, emitted after every page.

    ``current_offset`` is the next unprocessed position in the file's stable
    record ordering; passing it back as ``start_offset`` resumes the run.
    """

    total_processed: int = 0
    accounts_updated: int = 0
    accounts_created: int = 0
    failed_allocations: int = 0
    total_time_ms: int = 0
    is_complete: bool = False
    current_offset: int = 0
    errors: tuple[AllocationErrorEntry, ...] = ()
    status: AllocationStatus = AllocationStatus.RUNNING
    pages_processed: int = 0
    attempts: int = 1
    errors_dropped: int = 0

    @classmethod
    def initial(cls, start_offset: int = 0) -> AllocationProgress:
        return cls(current_offset=start_offset)

    def absorb(self, tally: AllocationTally, max_errors: int) -> AllocationProgress:
        """Fold one page's tally into this snapshot."""
        errors, dropped = bounded_errors(self.errors, tally.errors, max_errors)
        return replace(
            self,
            total_processed=self.total_processed + tally.total_processed,
            accounts_updated=self.accounts_updated + tally.accounts_updated,
            accounts_created=self.accounts_created + tally.accounts_created,
            failed_allocations=self.failed_allocations + tally.failed_allocations,
            errors=errors,
            errors_dropped=self.errors_dropped + dropped,
            pages_processed=self.pages_processed + 1,
        )

    def combine(self, later: AllocationProgress, max_errors: int) -> AllocationProgress:
        """Sum this (earlier attempts) with a later attempt's snapshot.

        Counters and elapsed time add up; position, completion and status
        come from ``later``.
        """
        errors, dropped = bounded_errors(self.errors, later.errors, max_errors)
        return AllocationProgress(
            total_processed=self.total_processed + later.total_processed,
            accounts_updated=self.accounts_updated + later.accounts_updated,
            accounts_created=self.accounts_created + later.accounts_created,
            failed_allocations=self.failed_allocations + later.failed_allocations,
            total_time_ms=self.total_time_ms + later.total_time_ms,
            is_complete=later.is_complete,
            current_offset=later.current_offset,
            errors=errors,
            status=later.status,
            pages_processed=self.pages_processed + later.pages_processed,
            attempts=self.attempts + later.attempts,
            errors_dropped=self.errors_dropped + later.errors_dropped + dropped,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "accounts_updated": self.accounts_updated,
            "accounts_created": self.accounts_created,
            "failed_allocations": self.failed_allocations,
            "total_time_ms": self.total_time_ms,
            "is_complete": self.is_complete,
            "current_offset": self.current_offset,
            "errors": [e.to_dict() for e in self.errors],
            "status": self.status.value,
            "pages_processed": self.pages_processed,
            "attempts": self.attempts,
            "errors_dropped": self.errors_dropped,
        }


# =============================================================================
# Stage results
# =============================================================================


@dataclass(frozen=True)
class LedgerUpdateResult:
    """Outcome of applying one page's ledger writes.

    ``created_accounts`` holds debtors inserted under the
    ``create-with-defaults`` policy so later stages can treat them as matched.
    """

    tally: AllocationTally = field(default_factory=AllocationTally)
    failed_accounts: frozenset[str] = frozenset()
    created_accounts: tuple[DebtorAccount, ...] = ()

    def failure_reasons(self) -> dict[str, str]:
        return {
            e.account_number: e.error
            for e in self.tally.errors
            if e.account_number in self.failed_accounts
        }


@dataclass(frozen=True)
class AgentPerformanceResult:
    agents_credited: int = 0
    amount_credited: Decimal = Decimal("0")
    agents_failed: int = 0


@dataclass(frozen=True)
class HistoryResult:
    upload_batch_id: UUID | None = None
    entries_recorded: int = 0
    entries_failed: int = 0


@dataclass(frozen=True)
class StatusMarkResult:
    """Outcome of the status transition for one page.

    ``errors`` lists records left pending because their chunk could not be
    written; they are reported but are not failed allocations.
    """

    marked_processed: int = 0
    marked_failed: int = 0
    errors: tuple[AllocationErrorEntry, ...] = ()


# =============================================================================
# Read models
# =============================================================================


@dataclass(frozen=True)
class StatusBucket:
    count: int = 0
    amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class AllocationStats:
    """Per-status record counts and amounts for one payment file."""

    payment_file_id: UUID
    total_records: int
    pending: StatusBucket
    processed: StatusBucket
    failed: StatusBucket
    allocation_status: str
    allocation_offset: int

    @property
    def allocation_percentage(self) -> float:
        if self.total_records == 0:
            return 0.0
        return round(self.processed.count / self.total_records * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        def bucket(b: StatusBucket) -> dict[str, Any]:
            return {"count": b.count, "amount": str(b.amount)}

        return {
            "payment_file_id": str(self.payment_file_id),
            "total_records": self.total_records,
            "pending": bucket(self.pending),
            "processed": bucket(self.processed),
            "failed": bucket(self.failed),
            "allocation_percentage": self.allocation_percentage,
            "allocation_status": self.allocation_status,
            "allocation_offset": self.allocation_offset,
        }
