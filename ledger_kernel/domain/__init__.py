"""Pure domain helpers for the ledger kernel (zero I/O)."""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.dates import (
    iso_week_number,
    month_start,
    parse_payment_date,
    week_start,
)
from ledger_kernel.domain.dtos import (
    DebtorAccount,
    FileAllocationStatus,
    PaymentRecord,
    ProcessingStatus,
)
from ledger_kernel.domain.payload import PaymentPayload

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "parse_payment_date",
    "week_start",
    "month_start",
    "iso_week_number",
    "PaymentPayload",
    "PaymentRecord",
    "DebtorAccount",
    "ProcessingStatus",
    "FileAllocationStatus",
]
