"""
Immutable snapshots of ledger rows handed across the kernel boundary.

ORM models convert to these via ``to_dto()`` so that allocation services work
with frozen values and never hold live, session-bound objects between
stages.  Pure, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.domain.payload import PaymentPayload


class ProcessingStatus(str, Enum):
    """Lifecycle of a parsed payment record."""

    PENDING = "pending"  # Parsed, awaiting allocation
    PROCESSED = "processed"  # Allocation attempted
    FAILED = "failed"  # Allocation failed, eligible for reset


class FileAllocationStatus(str, Enum):
    """Allocation state of a payment file (drives the per-file guard)."""

    PENDING = "pending"  # Never allocated
    ALLOCATING = "allocating"  # A run holds the file
    PAUSED = "paused"  # Last run stopped before completion
    ALLOCATED = "allocated"  # Every record processed


@dataclass(frozen=True)
class PaymentRecord:
    """One parsed payment line belonging to a payment file."""

    id: UUID
    payment_file_id: UUID
    account_number: str | None
    amount: Decimal
    outstanding_balance_total: Decimal
    created_at: datetime
    payload: PaymentPayload = field(default_factory=PaymentPayload)
    processing_status: ProcessingStatus = ProcessingStatus.PENDING


@dataclass(frozen=True)
class DebtorAccount:
    """Ledger row for a debtor, keyed by id, matched by account number."""

    id: UUID
    account_number: str
    outstanding_balance: Decimal
    last_payment_amount: Decimal | None = None
    last_payment_date: date | None = None
    assigned_agent_id: UUID | None = None
