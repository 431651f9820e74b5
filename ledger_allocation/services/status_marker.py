"""
StatusMarker -- moves a page's records out of the pending state.

Contract:
    Runs after the ledger and side-channel stages of a page, over the page's
    records BEFORE deduplication, in sub-chunks with the shared retry
    policy.  Every transition is conditional on the row still being
    ``pending``, so repeating it is harmless.

    - ``mark-all-attempted``: every record becomes ``processed``.
    - ``mark-successful-only``: records of accounts whose ledger write
      failed, and records with no account number, become ``failed`` with
      ``processing_error``; the rest become ``processed``.

    A chunk that cannot be written stays pending for a later run and is
    reported, one error entry per record, without counting as a failed
    allocation.

Architecture: ledger_allocation/services.  Imports from ledger_kernel.
"""

from __future__ import annotations

from datetime import datetime
from typing import Mapping, Sequence
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import PaymentRecord, ProcessingStatus
from ledger_kernel.exceptions import BulkWriteError, RetryExhaustedError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.payment_record import PaymentRecordModel

from ledger_allocation.domain.batching import chunked
from ledger_allocation.domain.dedup import MISSING_ACCOUNT_NUMBER, has_account_number
from ledger_allocation.domain.types import (
    AllocationErrorEntry,
    StatusMarkPolicy,
    StatusMarkResult,
)
from ledger_allocation.services.retry import Retrier

logger = get_logger("allocation.status")

STATUS_UPDATE_FAILED = "status update failed"


class StatusMarker:

    def __init__(
        self,
        session: Session,
        retrier: Retrier,
        clock: Clock | None = None,
        chunk_size: int = 50,
        policy: StatusMarkPolicy = StatusMarkPolicy.MARK_ALL_ATTEMPTED,
    ):
        self._session = session
        self._retrier = retrier
        self._clock = clock or SystemClock()
        self._chunk_size = chunk_size
        self._policy = policy

    def mark(
        self,
        records: Sequence[PaymentRecord],
        failure_reasons: Mapping[str, str] | None = None,
    ) -> StatusMarkResult:
        """Transition ``records``.

        Args:
            records: The page as fetched (not deduplicated).
            failure_reasons: account number -> error text for accounts whose
                ledger write failed.  Only consulted under
                ``mark-successful-only``, where records with no account
                number fail as well.
        """
        failure_reasons = failure_reasons or {}
        now = self._clock.now()

        succeeded: list[PaymentRecord] = []
        failed: list[tuple[PaymentRecord, str]] = []
        for record in records:
            reason = None
            if self._policy == StatusMarkPolicy.MARK_SUCCESSFUL_ONLY:
                reason = self._failure_reason(record, failure_reasons)
            if reason is None:
                succeeded.append(record)
            else:
                failed.append((record, reason))

        marked_processed = 0
        marked_failed = 0
        errors: list[AllocationErrorEntry] = []

        for chunk in chunked(succeeded, self._chunk_size):
            count, chunk_errors = self._mark_chunk(
                chunk, {r.id: None for r in chunk}, ProcessingStatus.PROCESSED, now,
            )
            marked_processed += count
            errors.extend(chunk_errors)

        for chunk in chunked(failed, self._chunk_size):
            count, chunk_errors = self._mark_chunk(
                [record for record, _ in chunk],
                {record.id: reason for record, reason in chunk},
                ProcessingStatus.FAILED,
                now,
            )
            marked_failed += count
            errors.extend(chunk_errors)

        return StatusMarkResult(
            marked_processed=marked_processed,
            marked_failed=marked_failed,
            errors=tuple(errors),
        )

    @staticmethod
    def _failure_reason(
        record: PaymentRecord,
        failure_reasons: Mapping[str, str],
    ) -> str | None:
        if not has_account_number(record):
            return MISSING_ACCOUNT_NUMBER
        return failure_reasons.get(record.account_number)

    def _mark_chunk(
        self,
        chunk: Sequence[PaymentRecord],
        reasons: dict[UUID, str | None],
        status: ProcessingStatus,
        now: datetime,
    ) -> tuple[int, list[AllocationErrorEntry]]:
        try:
            count = self._retrier.call(
                lambda: self._in_savepoint(reasons, status, now),
                operation="mark_record_status",
            )
        except RetryExhaustedError as exc:
            reason = exc.last_error
        except SQLAlchemyError as exc:
            reason = repr(exc)
        else:
            return count, []

        logger.warning(
            "status_chunk_failed",
            extra={
                "records": len(chunk),
                "target_status": status.value,
                "error_code": BulkWriteError.code,
                "reason": reason,
            },
        )
        return 0, [
            AllocationErrorEntry(
                account_number=record.account_number,
                error=STATUS_UPDATE_FAILED,
                code=BulkWriteError.code,
            )
            for record in chunk
        ]

    def _in_savepoint(
        self,
        reasons: dict[UUID, str | None],
        status: ProcessingStatus,
        now: datetime,
    ) -> int:
        with self._session.begin_nested():
            return self._mark_once(reasons, status, now)

    def _mark_once(
        self,
        reasons: dict[UUID, str | None],
        status: ProcessingStatus,
        now: datetime,
    ) -> int:
        # Group by error text so each distinct reason is one UPDATE.
        by_reason: dict[str | None, list[UUID]] = {}
        for record_id, reason in reasons.items():
            by_reason.setdefault(reason, []).append(record_id)

        changed = 0
        for reason, ids in by_reason.items():
            result = self._session.execute(
                update(PaymentRecordModel)
                .where(
                    PaymentRecordModel.id.in_(ids),
                    PaymentRecordModel.processing_status == ProcessingStatus.PENDING.value,
                )
                .values(
                    processing_status=status.value,
                    processed_at=now,
                    processing_error=reason,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            changed += result.rowcount
        return changed
