"""
PaymentFileModel -- an uploaded payment file and its allocation state.

Contract:
    One row per uploaded file.  The upload collaborator creates it together
    with its parsed PaymentRecord rows.  The allocation engine only touches
    the ``allocation_*`` columns, which double as the per-file advisory lock
    and the persisted resume checkpoint.

Architecture: ledger_kernel/models.  Imports from ledger_kernel.db only.

Invariants enforced:
    - At most one run holds ``allocation_status == 'allocating'`` for a file
      at a time; the token identifies the holder.
    - ``allocation_heartbeat_at`` moves forward with every committed page;
      a hold whose heartbeat is older than the stale threshold is dead.
    - ``allocation_offset`` is the next unprocessed position in the file's
      stable record ordering.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TimestampedBase
from ledger_kernel.domain.dtos import FileAllocationStatus


class PaymentFileModel(TimestampedBase):
    """Uploaded payment file with allocation lock and checkpoint."""

    __tablename__ = "payment_files"

    __table_args__ = (
        Index("ix_payment_files_allocation_status", "allocation_status"),
    )

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    total_records: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    allocation_status: Mapped[str] = mapped_column(
        String(20),
        default=FileAllocationStatus.PENDING.value,
        nullable=False,
    )
    allocation_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    allocation_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    allocation_heartbeat_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    allocation_offset: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False,
    )
    allocation_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    records: Mapped[list["PaymentRecordModel"]] = relationship(
        "PaymentRecordModel",
        back_populates="payment_file",
        foreign_keys="PaymentRecordModel.payment_file_id",
    )

    def __repr__(self) -> str:
        return f"<PaymentFile {self.file_name} [{self.allocation_status}]>"
