"""
Weekly payment history: upload-batch containers and per-account entries.

Contract:
    PaymentUploadBatchModel is the weekly container, unique per
    ``upload_week`` (the Monday of the ISO week).  PaymentHistoryEntryModel
    rows snapshot each allocated account's normalised payment data for
    audit and reporting; they are insert-only.

Architecture: ledger_kernel/models.  Imports from ledger_kernel.db only.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TimestampedBase, UUIDString


class PaymentUploadBatchModel(TimestampedBase):
    """Weekly container for payment history entries."""

    __tablename__ = "payment_upload_batches"

    upload_week: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    upload_year: Mapped[int] = mapped_column(Integer, nullable=False)
    upload_week_number: Mapped[int] = mapped_column(Integer, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    uploaded_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="processing", nullable=False)
    total_records: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    processed_records: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    failed_records: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    error_log: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    processing_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    entries: Mapped[list["PaymentHistoryEntryModel"]] = relationship(
        "PaymentHistoryEntryModel",
        back_populates="upload_batch",
        foreign_keys="PaymentHistoryEntryModel.upload_batch_id",
    )


class PaymentHistoryEntryModel(TimestampedBase):
    """Normalised snapshot of one account's payment within a week."""

    __tablename__ = "payment_history"

    __table_args__ = (
        Index("ix_payment_history_batch", "upload_batch_id"),
        Index("ix_payment_history_account_week", "account_no", "data_week"),
    )

    upload_batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payment_upload_batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    debtor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    account_no: Mapped[str] = mapped_column(String(64), nullable=False)
    account_holder_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    occ_own: Mapped[str | None] = mapped_column(String(100), nullable=True)
    indigent: Mapped[str] = mapped_column(String(20), default="N", nullable=False)
    outstanding_total_balance: Mapped[Decimal] = mapped_column(
        default=Decimal("0"), nullable=False,
    )
    last_payment_amount: Mapped[Decimal] = mapped_column(
        default=Decimal("0"), nullable=False,
    )
    last_payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    raw_last_payment_date: Mapped[str | None] = mapped_column(String(50), nullable=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    data_week: Mapped[date] = mapped_column(Date, nullable=False)

    upload_batch: Mapped[PaymentUploadBatchModel] = relationship(
        "PaymentUploadBatchModel",
        back_populates="entries",
        foreign_keys=[upload_batch_id],
    )
