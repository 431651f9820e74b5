"""
LedgerUpdater -- applies a deduplicated page to the debtor ledger.

Contract:
    For each record: a matched debtor gets its outstanding balance, last
    payment amount and (when the source date is well formed) last payment
    date overwritten, keyed by debtor id.  An unmatched record is rejected
    or, under ``create-with-defaults``, inserted as a new debtor.

    Writes go out in sub-chunks, each in its own SAVEPOINT with its own
    retries.  A failed chunk turns into one error entry per account in it;
    sibling chunks are unaffected.

Architecture: ledger_allocation/services.  Imports from ledger_kernel and
    ledger_allocation.domain.

Invariants enforced:
    - ``accounts_updated`` / ``accounts_created`` count only rows written by
      a committed-to-savepoint chunk.
    - An unparseable payment date never reaches the ledger; the stored date
      is left as is.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence
from uuid import uuid4

from sqlalchemy import insert, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import DebtorAccount, PaymentRecord
from ledger_kernel.exceptions import BulkWriteError, MissingAccountError, RetryExhaustedError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.debtor import DebtorAccountModel

from ledger_allocation.domain.batching import chunked
from ledger_allocation.domain.types import (
    AllocationErrorEntry,
    AllocationTally,
    LedgerUpdateResult,
    UnmatchedAccountPolicy,
)
from ledger_allocation.services.retry import Retrier

logger = get_logger("allocation.ledger")

NO_MATCHING_ACCOUNT = "no matching account"

# (account_number, column values)
_Staged = tuple[str, dict[str, Any]]


class LedgerUpdater:
    """Chunked, SAVEPOINT-isolated debtor ledger writes.

    Non-goals:
        - Does NOT commit -- the runner owns the page transaction.
        - Does NOT credit agents or write history -- separate stages.
    """

    def __init__(
        self,
        session: Session,
        retrier: Retrier,
        clock: Clock | None = None,
        chunk_size: int = 50,
        unmatched_policy: UnmatchedAccountPolicy = UnmatchedAccountPolicy.REJECT_UNMATCHED,
    ):
        self._session = session
        self._retrier = retrier
        self._clock = clock or SystemClock()
        self._chunk_size = chunk_size
        self._unmatched_policy = unmatched_policy

    def apply(
        self,
        records: Sequence[PaymentRecord],
        debtors: Mapping[str, DebtorAccount],
    ) -> LedgerUpdateResult:
        now = self._clock.now()
        updates: list[_Staged] = []
        inserts: list[_Staged] = []
        rejected: list[str] = []

        for record in records:
            account_number = record.account_number
            debtor = debtors.get(account_number)
            if debtor is not None:
                updates.append((account_number, self._update_values(debtor, record, now)))
            elif self._unmatched_policy == UnmatchedAccountPolicy.CREATE_WITH_DEFAULTS:
                inserts.append((account_number, self._insert_values(record, now)))
            else:
                rejected.append(account_number)

        tally = AllocationTally(
            failed_allocations=len(rejected),
            errors=tuple(
                AllocationErrorEntry(
                    account_number=account_number,
                    error=NO_MATCHING_ACCOUNT,
                    code=MissingAccountError.code,
                )
                for account_number in rejected
            ),
        )
        failed = set(rejected)
        created: list[DebtorAccount] = []

        for chunk in chunked(updates, self._chunk_size):
            ok = self._write_chunk("update_debtor_accounts", chunk, self._update_once)
            if ok:
                tally = tally.plus(AllocationTally(accounts_updated=len(chunk)))
            else:
                tally = tally.plus(self._chunk_failure(chunk, "ledger update failed"))
                failed.update(account_number for account_number, _ in chunk)

        for chunk in chunked(inserts, self._chunk_size):
            ok = self._write_chunk("create_debtor_accounts", chunk, self._insert_once)
            if ok:
                tally = tally.plus(AllocationTally(accounts_created=len(chunk)))
                created.extend(self._as_debtor(values) for _, values in chunk)
            else:
                tally = tally.plus(self._chunk_failure(chunk, "account creation failed"))
                failed.update(account_number for account_number, _ in chunk)

        if rejected:
            logger.info(
                "unmatched_accounts_rejected",
                extra={"count": len(rejected)},
            )

        return LedgerUpdateResult(
            tally=tally,
            failed_accounts=frozenset(failed),
            created_accounts=tuple(created),
        )

    # -------------------------------------------------------------------------
    # Staging
    # -------------------------------------------------------------------------

    @staticmethod
    def _update_values(debtor: DebtorAccount, record: PaymentRecord, now) -> dict[str, Any]:
        values: dict[str, Any] = {
            "id": debtor.id,
            "outstanding_balance": record.outstanding_balance_total,
            "last_payment_amount": record.amount,
            "updated_at": now,
        }
        payment_date = record.payload.last_payment_date
        if payment_date is not None:
            values["last_payment_date"] = payment_date
        return values

    @staticmethod
    def _insert_values(record: PaymentRecord, now) -> dict[str, Any]:
        return {
            "id": uuid4(),
            "account_number": record.account_number,
            "account_holder_name": record.payload.account_holder_name,
            "outstanding_balance": record.outstanding_balance_total,
            "last_payment_amount": record.amount,
            "last_payment_date": record.payload.last_payment_date,
            "assigned_agent_id": None,
            "created_at": now,
            "updated_at": now,
        }

    @staticmethod
    def _as_debtor(values: dict[str, Any]) -> DebtorAccount:
        return DebtorAccount(
            id=values["id"],
            account_number=values["account_number"],
            outstanding_balance=values["outstanding_balance"],
            last_payment_amount=values["last_payment_amount"],
            last_payment_date=values["last_payment_date"],
        )

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def _write_chunk(
        self,
        operation: str,
        chunk: Sequence[_Staged],
        write: Callable[[list[dict[str, Any]]], None],
    ) -> bool:
        rows = [values for _, values in chunk]
        try:
            self._retrier.call(
                lambda: self._in_savepoint(write, rows),
                operation=operation,
            )
        except RetryExhaustedError as exc:
            reason = exc.last_error
        except SQLAlchemyError as exc:
            reason = repr(exc)
        else:
            return True

        logger.warning(
            "ledger_chunk_failed",
            extra={
                "operation": operation,
                "accounts": len(chunk),
                "error_code": BulkWriteError.code,
                "reason": reason,
            },
        )
        return False

    def _in_savepoint(self, write, rows: list[dict[str, Any]]) -> None:
        with self._session.begin_nested():
            write(rows)

    def _update_once(self, rows: list[dict[str, Any]]) -> None:
        # Bulk UPDATE by primary key; rows without a valid date omit the
        # column, so group them by key set.
        with_date = [r for r in rows if "last_payment_date" in r]
        without_date = [r for r in rows if "last_payment_date" not in r]
        for group in (with_date, without_date):
            if group:
                self._session.execute(update(DebtorAccountModel), group)

    def _insert_once(self, rows: list[dict[str, Any]]) -> None:
        self._session.execute(insert(DebtorAccountModel), rows)

    @staticmethod
    def _chunk_failure(chunk: Sequence[_Staged], message: str) -> AllocationTally:
        return AllocationTally(
            failed_allocations=len(chunk),
            errors=tuple(
                AllocationErrorEntry(
                    account_number=account_number,
                    error=message,
                    code=BulkWriteError.code,
                )
                for account_number, _ in chunk
            ),
        )
