"""
PaymentHistoryRecorder -- weekly audit trail of allocated payments.

Contract:
    The ISO week (Monday start) of the clock's current date partitions
    history.  The week's upload-batch container is reused when present and
    created otherwise; creation needs an actor identity from the injected
    resolver.  Every deduplicated record with a matching debtor becomes one
    normalised entry; records without one count as failed entries.

Architecture: ledger_allocation/services.  Imports from ledger_kernel.

Failure modes:
    - AuthRequiredError when the container must be created and no actor is
      available.  Fatal for history only: the runner wraps this stage in a
      SAVEPOINT and logs the failure.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Mapping, Sequence
from uuid import UUID

from sqlalchemy import insert, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dates import iso_week_number, week_start
from ledger_kernel.domain.dtos import DebtorAccount, PaymentRecord
from ledger_kernel.exceptions import AuthRequiredError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.payment_history import (
    PaymentHistoryEntryModel,
    PaymentUploadBatchModel,
)

from ledger_allocation.domain.types import HistoryResult

logger = get_logger("allocation.history")

ActorResolver = Callable[[], UUID | None]


def weekly_file_name(week: date) -> str:
    return f"payment-file-week-{week.isoformat()}"


def _no_actor() -> UUID | None:
    return None


class PaymentHistoryRecorder:

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_resolver: ActorResolver | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._actor_resolver = actor_resolver or _no_actor

    def record(
        self,
        records: Sequence[PaymentRecord],
        debtors: Mapping[str, DebtorAccount],
    ) -> HistoryResult:
        now = self._clock.now()
        week = week_start(now.date())
        batch = self._weekly_batch(week, now)

        entries: list[dict[str, Any]] = []
        errors: list[str] = []
        for record in records:
            debtor = debtors.get(record.account_number)
            if debtor is None:
                errors.append(f"{record.account_number}: no matching account")
                continue
            entries.append(self._entry_values(batch.id, record, debtor, now, week))

        if entries:
            self._session.execute(insert(PaymentHistoryEntryModel), entries)

        batch.total_records += len(records)
        batch.processed_records += len(entries)
        batch.failed_records += len(errors)
        if errors:
            existing = batch.error_log.split("\n") if batch.error_log else []
            batch.error_log = "\n".join(existing + errors)
        batch.status = "completed"
        batch.processing_completed_at = now
        self._session.flush()

        logger.info(
            "payment_history_recorded",
            extra={
                "upload_batch_id": str(batch.id),
                "upload_week": week,
                "entries_recorded": len(entries),
                "entries_failed": len(errors),
            },
        )
        return HistoryResult(
            upload_batch_id=batch.id,
            entries_recorded=len(entries),
            entries_failed=len(errors),
        )

    def _weekly_batch(self, week: date, now: datetime) -> PaymentUploadBatchModel:
        batch = self._session.execute(
            select(PaymentUploadBatchModel).where(
                PaymentUploadBatchModel.upload_week == week,
            )
        ).scalar_one_or_none()
        if batch is not None:
            return batch

        actor_id = self._actor_resolver()
        if actor_id is None:
            raise AuthRequiredError("create_weekly_upload_batch")

        batch = PaymentUploadBatchModel(
            upload_week=week,
            upload_year=week.year,
            upload_week_number=iso_week_number(week),
            file_name=weekly_file_name(week),
            uploaded_by=actor_id,
            status="processing",
            total_records=0,
            processed_records=0,
            failed_records=0,
            processing_started_at=now,
            created_at=now,
            updated_at=now,
        )
        self._session.add(batch)
        self._session.flush()

        logger.info(
            "weekly_upload_batch_created",
            extra={"upload_batch_id": str(batch.id), "upload_week": week},
        )
        return batch

    @staticmethod
    def _entry_values(
        batch_id: UUID,
        record: PaymentRecord,
        debtor: DebtorAccount,
        now: datetime,
        week: date,
    ) -> dict[str, Any]:
        payload = record.payload
        return {
            "upload_batch_id": batch_id,
            "debtor_id": debtor.id,
            "account_no": record.account_number,
            "account_holder_name": payload.account_holder_name,
            "account_status": payload.account_status,
            "occ_own": payload.occ_own,
            "indigent": payload.indigent_flag,
            "outstanding_total_balance": record.outstanding_balance_total,
            "last_payment_amount": record.amount,
            "last_payment_date": payload.last_payment_date,
            "raw_last_payment_date": payload.last_payment_date_raw,
            "processed_at": now,
            "data_week": week,
            "created_at": now,
            "updated_at": now,
        }
