"""
AgentPerformanceAccumulator -- credits collected amounts to agents.

Contract:
    Sums the positive amounts of a deduplicated page per assigned agent and
    adds each sum to the agent's row for the current month (first day of the
    clock's month), creating the row with the default target when absent.
    Each agent is upserted in its own SAVEPOINT.  When a concurrent run
    creates the month row first, the insert loses on the unique constraint
    and the credit is applied as an increment instead.  A failing agent is
    logged and skipped; it never fails the page.

Architecture: ledger_allocation/services.  Imports from ledger_kernel.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Mapping, Sequence
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dates import month_start
from ledger_kernel.domain.dtos import DebtorAccount, PaymentRecord
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.agent_performance import (
    DEFAULT_AGENT_TARGET,
    AgentPerformanceModel,
)

from ledger_allocation.domain.types import AgentPerformanceResult

logger = get_logger("allocation.agent_performance")


def collect_agent_totals(
    records: Sequence[PaymentRecord],
    debtors: Mapping[str, DebtorAccount],
) -> dict[UUID, Decimal]:
    """Sum positive record amounts per assigned agent."""
    totals: dict[UUID, Decimal] = {}
    for record in records:
        debtor = debtors.get(record.account_number)
        if debtor is None or debtor.assigned_agent_id is None:
            continue
        if record.amount <= ZERO:
            continue
        agent_id = debtor.assigned_agent_id
        totals[agent_id] = totals.get(agent_id, ZERO) + record.amount
    return totals


class AgentPerformanceAccumulator:

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_target: Decimal = DEFAULT_AGENT_TARGET,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._default_target = default_target

    def credit(
        self,
        records: Sequence[PaymentRecord],
        debtors: Mapping[str, DebtorAccount],
    ) -> AgentPerformanceResult:
        totals = collect_agent_totals(records, debtors)
        if not totals:
            return AgentPerformanceResult()

        month_year = month_start(self._clock.now().date())
        credited = 0
        failed = 0
        amount_credited = ZERO

        for agent_id, amount in totals.items():
            try:
                with self._session.begin_nested():
                    self._upsert_once(agent_id, month_year, amount)
            except Exception:
                failed += 1
                logger.warning(
                    "agent_performance_upsert_failed",
                    exc_info=True,
                    extra={
                        "agent_id": str(agent_id),
                        "month_year": month_year,
                        "amount": amount,
                    },
                )
                continue
            credited += 1
            amount_credited += amount

        logger.info(
            "agent_performance_credited",
            extra={
                "agents_credited": credited,
                "agents_failed": failed,
                "amount_credited": amount_credited,
                "month_year": month_year,
            },
        )
        return AgentPerformanceResult(
            agents_credited=credited,
            amount_credited=amount_credited,
            agents_failed=failed,
        )

    def _upsert_once(self, agent_id: UUID, month_year: date, amount: Decimal) -> None:
        if self._add_to_existing(agent_id, month_year, amount):
            return
        try:
            with self._session.begin_nested():
                self._insert_row(agent_id, month_year, amount)
        except IntegrityError:
            logger.info(
                "agent_performance_insert_raced",
                extra={"agent_id": str(agent_id), "month_year": month_year},
            )
            if not self._add_to_existing(agent_id, month_year, amount):
                raise

    def _add_to_existing(self, agent_id: UUID, month_year: date, amount: Decimal) -> bool:
        result = self._session.execute(
            update(AgentPerformanceModel)
            .where(
                AgentPerformanceModel.agent_id == agent_id,
                AgentPerformanceModel.month_year == month_year,
            )
            .values(
                collected_amount=AgentPerformanceModel.collected_amount + amount,
                updated_at=self._clock.now(),
            )
            .execution_options(synchronize_session="fetch")
        )
        return bool(result.rowcount)

    def _insert_row(self, agent_id: UUID, month_year: date, amount: Decimal) -> None:
        now = self._clock.now()
        self._session.add(
            AgentPerformanceModel(
                agent_id=agent_id,
                month_year=month_year,
                collected_amount=amount,
                target_amount=self._default_target,
                created_at=now,
                updated_at=now,
            )
        )
        self._session.flush()
