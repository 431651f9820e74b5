"""
RecordFetcher -- reads pages of pending payment records.

Contract:
    A page is the window ``[offset, offset + page_size)`` of the file's full
    record ordering ``(created_at, id)``, filtered to ``pending``.  Because
    the window is taken over every record of the file, records leaving the
    pending state never shift later records into an earlier window, and
    resuming at an offset never skips pending work.

Architecture: ledger_allocation/services.  Imports from ledger_kernel.

Failure modes:
    - TransientFetchError when a read keeps failing after retries.  The
      runner counts it toward the circuit breaker.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import PaymentRecord, ProcessingStatus
from ledger_kernel.exceptions import RetryExhaustedError, TransientFetchError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.payment_record import PaymentRecordModel

from ledger_allocation.services.retry import Retrier

logger = get_logger("allocation.fetcher")


class RecordFetcher:
    """Paged, retried reads of a payment file's records."""

    def __init__(self, session: Session, retrier: Retrier):
        self._session = session
        self._retrier = retrier

    def fetch(
        self,
        payment_file_id: UUID,
        page_size: int,
        offset: int,
    ) -> tuple[PaymentRecord, ...]:
        """Return the pending records of the window at ``offset``, oldest first."""
        try:
            records = self._retrier.call(
                lambda: self._in_savepoint(
                    lambda: self._fetch_once(payment_file_id, page_size, offset),
                ),
                operation="fetch_pending_records",
            )
        except RetryExhaustedError as exc:
            raise TransientFetchError(str(payment_file_id), offset, exc.last_error) from exc

        logger.debug(
            "page_fetched",
            extra={"offset": offset, "page_size": page_size, "records": len(records)},
        )
        return records

    def count_pending(self, payment_file_id: UUID) -> int:
        return self._count(payment_file_id, ProcessingStatus.PENDING)

    def count_records(self, payment_file_id: UUID) -> int:
        return self._count(payment_file_id, None)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _in_savepoint(self, fn):
        with self._session.begin_nested():
            return fn()

    def _fetch_once(
        self,
        payment_file_id: UUID,
        page_size: int,
        offset: int,
    ) -> tuple[PaymentRecord, ...]:
        window = (
            select(PaymentRecordModel.id)
            .where(PaymentRecordModel.payment_file_id == payment_file_id)
            .order_by(PaymentRecordModel.created_at, PaymentRecordModel.id)
            .offset(offset)
            .limit(page_size)
            .subquery()
        )
        rows = self._session.execute(
            select(PaymentRecordModel)
            .where(
                PaymentRecordModel.id.in_(select(window.c.id)),
                PaymentRecordModel.processing_status == ProcessingStatus.PENDING.value,
            )
            .order_by(PaymentRecordModel.created_at, PaymentRecordModel.id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return tuple(row.to_dto() for row in rows)

    def _count(self, payment_file_id: UUID, status: ProcessingStatus | None) -> int:
        stmt = select(func.count(PaymentRecordModel.id)).where(
            PaymentRecordModel.payment_file_id == payment_file_id,
        )
        if status is not None:
            stmt = stmt.where(PaymentRecordModel.processing_status == status.value)

        try:
            return self._retrier.call(
                lambda: self._in_savepoint(lambda: self._session.execute(stmt).scalar_one()),
                operation="count_records",
            )
        except RetryExhaustedError as exc:
            raise TransientFetchError(str(payment_file_id), -1, exc.last_error) from exc
