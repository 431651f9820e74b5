"""
Module: ledger_allocation.selectors
Responsibility: Read-only queries over a payment file's allocation state:
    per-status counts and amounts, allocation eligibility, and per-record
    details.
Architecture position: Allocation > Selectors.  May import from
    ledger_kernel models and ledger_allocation.domain.  Never writes.

Invariants enforced:
    - Read-only access: no add, flush, commit or delete.
    - Returns frozen dataclasses, never ORM instances.

Failure modes:
    - PaymentFileNotFoundError for an unknown payment file id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, to_money
from ledger_kernel.domain.dtos import FileAllocationStatus, ProcessingStatus
from ledger_kernel.domain.payload import PaymentPayload
from ledger_kernel.exceptions import PaymentFileNotFoundError
from ledger_kernel.models.payment_file import PaymentFileModel
from ledger_kernel.models.payment_record import PaymentRecordModel

from ledger_allocation.domain.types import AllocationStats, StatusBucket


@dataclass(frozen=True)
class AllocationDetail:
    """One payment record as shown in allocation results."""

    record_id: UUID
    account_number: str | None
    account_holder_name: str | None
    amount: Decimal
    processing_status: str
    processing_error: str | None
    processed_at: datetime | None
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "record_id": str(self.record_id),
            "account_number": self.account_number,
            "account_holder_name": self.account_holder_name,
            "amount": str(self.amount),
            "processing_status": self.processing_status,
            "processing_error": self.processing_error,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "created_at": self.created_at.isoformat(),
        }


class AllocationSelector:
    """
    Read-only allocation queries.

    Contract:
        ``stats()``, ``can_allocate()`` and ``details()`` read the payment
        file and its records within the caller's session.
    """

    def __init__(self, session: Session):
        self.session = session

    def stats(self, payment_file_id: UUID) -> AllocationStats:
        payment_file = self._file(payment_file_id)

        rows = self.session.execute(
            select(
                PaymentRecordModel.processing_status,
                func.count(PaymentRecordModel.id),
                func.sum(PaymentRecordModel.amount),
            )
            .where(PaymentRecordModel.payment_file_id == payment_file_id)
            .group_by(PaymentRecordModel.processing_status)
        ).all()

        buckets = {
            status: StatusBucket(count=count, amount=to_money(amount) if amount is not None else ZERO)
            for status, count, amount in rows
        }
        empty = StatusBucket()
        return AllocationStats(
            payment_file_id=payment_file_id,
            total_records=sum(b.count for b in buckets.values()),
            pending=buckets.get(ProcessingStatus.PENDING.value, empty),
            processed=buckets.get(ProcessingStatus.PROCESSED.value, empty),
            failed=buckets.get(ProcessingStatus.FAILED.value, empty),
            allocation_status=payment_file.allocation_status,
            allocation_offset=payment_file.allocation_offset,
        )

    def can_allocate(self, payment_file_id: UUID) -> bool:
        """True when the file is not held by a run and has pending or failed records.

        Failed records count because ``reset_failed_records`` makes them
        allocatable again.
        """
        payment_file = self._find(payment_file_id)
        if payment_file is None:
            return False
        if payment_file.allocation_status == FileAllocationStatus.ALLOCATING.value:
            return False

        open_records = self.session.execute(
            select(func.count(PaymentRecordModel.id)).where(
                PaymentRecordModel.payment_file_id == payment_file_id,
                PaymentRecordModel.processing_status.in_(
                    [ProcessingStatus.PENDING.value, ProcessingStatus.FAILED.value]
                ),
            )
        ).scalar_one()
        return open_records > 0

    def details(
        self,
        payment_file_id: UUID,
        status: ProcessingStatus | None = None,
        limit: int | None = None,
    ) -> list[AllocationDetail]:
        """Records of the file, newest first."""
        self._file(payment_file_id)

        stmt = (
            select(PaymentRecordModel)
            .where(PaymentRecordModel.payment_file_id == payment_file_id)
            .order_by(PaymentRecordModel.created_at.desc(), PaymentRecordModel.id.desc())
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(PaymentRecordModel.processing_status == status.value)
        if limit is not None:
            stmt = stmt.limit(limit)

        return [
            AllocationDetail(
                record_id=row.id,
                account_number=row.account_number,
                account_holder_name=PaymentPayload.from_raw(row.raw_data).account_holder_name,
                amount=to_money(row.amount),
                processing_status=row.processing_status,
                processing_error=row.processing_error,
                processed_at=row.processed_at,
                created_at=row.created_at,
            )
            for row in self.session.execute(stmt).scalars()
        ]

    def _find(self, payment_file_id: UUID) -> PaymentFileModel | None:
        # Allocation columns are written with Core UPDATEs; refresh any
        # instance already in the identity map.
        return self.session.execute(
            select(PaymentFileModel)
            .where(PaymentFileModel.id == payment_file_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _file(self, payment_file_id: UUID) -> PaymentFileModel:
        payment_file = self._find(payment_file_id)
        if payment_file is None:
            raise PaymentFileNotFoundError(str(payment_file_id))
        return payment_file
