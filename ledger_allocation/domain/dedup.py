"""
Latest-record-wins deduplication of a page of payment records.

Pure, zero I/O.  A payment file may carry several lines for the same account;
only the most recently created one is applied to the ledger.  Lines with no
account number cannot be keyed; they are split off so the caller can fail
them explicitly.
"""

from __future__ import annotations

from typing import Iterable

from ledger_kernel.domain.dtos import PaymentRecord

MISSING_ACCOUNT_NUMBER = "missing account number"


def has_account_number(record: PaymentRecord) -> bool:
    return bool(record.account_number and record.account_number.strip())


def without_account_number(records: Iterable[PaymentRecord]) -> tuple[PaymentRecord, ...]:
    """Records whose account number is null or blank, in input order."""
    return tuple(r for r in records if not has_account_number(r))


def deduplicate_latest(records: Iterable[PaymentRecord]) -> tuple[PaymentRecord, ...]:
    """Keep one record per account number: the one with the latest ``created_at``.

    Ties on ``created_at`` go to the record appearing later in the input.
    Records without an account number are left out; see
    ``without_account_number()``.  The result preserves the order in which
    each account first appeared.
    """
    latest: dict[str, PaymentRecord] = {}
    for record in records:
        if not has_account_number(record):
            continue
        current = latest.get(record.account_number)
        if current is None or record.created_at >= current.created_at:
            latest[record.account_number] = record
    return tuple(latest.values())
