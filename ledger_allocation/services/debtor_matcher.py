"""
DebtorMatcher -- bulk lookup of debtor accounts by account number.

Contract:
    One IN query per page, retried under the shared policy.  Returns a map
    from account number to an immutable DebtorAccount; absent keys have no
    ledger row.

Architecture: ledger_allocation/services.  Imports from ledger_kernel.

Failure modes:
    - DebtorLookupError (a TransientFetchError) when the lookup keeps failing.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import DebtorAccount
from ledger_kernel.exceptions import DebtorLookupError, RetryExhaustedError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.debtor import DebtorAccountModel

from ledger_allocation.services.retry import Retrier

logger = get_logger("allocation.matcher")


class DebtorMatcher:

    def __init__(self, session: Session, retrier: Retrier):
        self._session = session
        self._retrier = retrier

    def match(self, account_numbers: Iterable[str | None]) -> dict[str, DebtorAccount]:
        numbers = sorted({n for n in account_numbers if n})
        if not numbers:
            return {}

        try:
            matched = self._retrier.call(
                lambda: self._in_savepoint(numbers),
                operation="match_debtor_accounts",
            )
        except RetryExhaustedError as exc:
            raise DebtorLookupError(len(numbers), exc.last_error) from exc

        logger.debug(
            "debtors_matched",
            extra={"requested": len(numbers), "matched": len(matched)},
        )
        return matched

    def _in_savepoint(self, numbers: list[str]) -> dict[str, DebtorAccount]:
        with self._session.begin_nested():
            return self._match_once(numbers)

    def _match_once(self, numbers: list[str]) -> dict[str, DebtorAccount]:
        rows = self._session.execute(
            select(DebtorAccountModel)
            .where(DebtorAccountModel.account_number.in_(numbers))
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {row.account_number: row.to_dto() for row in rows}
