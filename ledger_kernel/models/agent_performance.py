"""
AgentPerformanceModel -- monthly collected totals per collection agent.

Contract:
    One row per (agent_id, month_year).  ``month_year`` is the first day of
    the month.  ``collected_amount`` only grows, via SQL increments, so two
    contributions in the same month add up instead of overwriting.

Architecture: ledger_kernel/models.  Imports from ledger_kernel.db only.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TimestampedBase, UUIDString

DEFAULT_AGENT_TARGET = Decimal("1200000")


class AgentPerformanceModel(TimestampedBase):
    """Monthly performance row for an agent."""

    __tablename__ = "agent_performance"

    __table_args__ = (
        UniqueConstraint("agent_id", "month_year", name="uq_agent_performance_month"),
    )

    agent_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    month_year: Mapped[date] = mapped_column(Date, nullable=False)
    collected_amount: Mapped[Decimal] = mapped_column(
        default=Decimal("0"), nullable=False,
    )
    target_amount: Mapped[Decimal] = mapped_column(
        default=DEFAULT_AGENT_TARGET, nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AgentPerformance {self.agent_id} {self.month_year}>"
