"""
PaymentRecordModel -- one parsed payment line awaiting allocation.

Contract:
    Created by the upload collaborator in ``pending`` state.  After creation
    only ``processing_status``, ``processed_at`` and ``processing_error``
    change.  ``created_at`` is set explicitly by the parser and defines the
    stable page ordering ``(created_at, id)``.

Architecture: ledger_kernel/models.  Imports from ledger_kernel.db only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TimestampedBase, UUIDString
from ledger_kernel.db.types import to_money
from ledger_kernel.domain.dtos import PaymentRecord, ProcessingStatus
from ledger_kernel.domain.payload import PaymentPayload


class PaymentRecordModel(TimestampedBase):
    """Parsed payment line tied to a payment file."""

    __tablename__ = "payment_records"

    __table_args__ = (
        Index(
            "ix_payment_records_file_order",
            "payment_file_id",
            "created_at",
            "id",
        ),
        Index(
            "ix_payment_records_file_status",
            "payment_file_id",
            "processing_status",
        ),
        Index("ix_payment_records_account_number", "account_number"),
    )

    payment_file_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payment_files.id", ondelete="CASCADE"),
        nullable=False,
    )
    account_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    outstanding_balance_total: Mapped[Decimal | None] = mapped_column(nullable=True)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    processing_status: Mapped[str] = mapped_column(
        String(20),
        default=ProcessingStatus.PENDING.value,
        nullable=False,
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment_file: Mapped["PaymentFileModel"] = relationship(
        "PaymentFileModel",
        back_populates="records",
        foreign_keys=[payment_file_id],
    )

    def to_dto(self) -> PaymentRecord:
        return PaymentRecord(
            id=self.id,
            payment_file_id=self.payment_file_id,
            account_number=(self.account_number or "").strip() or None,
            amount=to_money(self.amount),
            outstanding_balance_total=to_money(self.outstanding_balance_total),
            created_at=self.created_at,
            payload=PaymentPayload.from_raw(self.raw_data),
            processing_status=ProcessingStatus(self.processing_status),
        )

    def __repr__(self) -> str:
        return f"<PaymentRecord {self.account_number} [{self.processing_status}]>"
