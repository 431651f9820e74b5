"""
DebtorAccountModel -- the persistent debtor ledger.

Contract:
    Pre-exists before allocation.  The engine overwrites the balance and
    last-payment columns from the latest payment record for the account and
    never deletes rows.  Updates are keyed by ``id``; ``account_number`` is
    the unique matching key.

Architecture: ledger_kernel/models.  Imports from ledger_kernel.db only.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TimestampedBase, UUIDString
from ledger_kernel.db.types import to_money
from ledger_kernel.domain.dtos import DebtorAccount


class DebtorAccountModel(TimestampedBase):
    """Debtor ledger row."""

    __tablename__ = "debtor_accounts"

    account_number: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True,
    )
    account_holder_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    outstanding_balance: Mapped[Decimal] = mapped_column(
        default=Decimal("0"), nullable=False,
    )
    last_payment_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    last_payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    assigned_agent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def to_dto(self) -> DebtorAccount:
        return DebtorAccount(
            id=self.id,
            account_number=self.account_number,
            outstanding_balance=to_money(self.outstanding_balance),
            last_payment_amount=(
                to_money(self.last_payment_amount)
                if self.last_payment_amount is not None
                else None
            ),
            last_payment_date=self.last_payment_date,
            assigned_agent_id=self.assigned_agent_id,
        )

    def __repr__(self) -> str:
        return f"<DebtorAccount {self.account_number}>"
