"""
AllocationGuard -- per-file advisory lock and resume checkpoint.

Contract:
    ``acquire()`` is a conditional UPDATE on the payment file row: it only
    succeeds when no live run holds the file.  A hold whose heartbeat is
    older than the stale threshold is taken over (the previous holder is
    presumed dead).  The returned lease carries a token; ``checkpoint()``
    and ``release()`` only touch the row while that token still matches,
    and ``checkpoint()`` refreshes the heartbeat.

Architecture: ledger_allocation/services.  Imports from ledger_kernel.

Invariants enforced:
    - At most one live run per payment file.  A holder that finds its token
      replaced stops writing: ``checkpoint()`` raises and the page rolls back.
    - ``allocation_offset`` is written in the same transaction as the page
      it follows, so a crash never leaves a checkpoint ahead of the work.

Failure modes:
    - PaymentFileNotFoundError if the file does not exist.
    - AllocationAlreadyRunningError if a live run holds it, or from
      ``checkpoint()`` when the lease was taken over.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import FileAllocationStatus
from ledger_kernel.exceptions import (
    AllocationAlreadyRunningError,
    PaymentFileNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.payment_file import PaymentFileModel

from ledger_allocation.domain.types import AllocationProgress

logger = get_logger("allocation.guard")


@dataclass(frozen=True)
class AllocationLease:
    payment_file_id: UUID
    token: str
    checkpoint_offset: int


class AllocationGuard:
    """Acquire, checkpoint and release the allocation hold on a payment file.

    ``acquire()`` and ``release()`` commit so the hold is visible to other
    sessions; ``checkpoint()`` does not (the runner commits it with the page).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        stale_after_seconds: float = 7200.0,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._stale_after = timedelta(seconds=stale_after_seconds)

    def acquire(self, payment_file_id: UUID) -> AllocationLease:
        now = self._clock.now()
        token = uuid4().hex
        stale_cutoff = now - self._stale_after
        last_seen = func.coalesce(
            PaymentFileModel.allocation_heartbeat_at,
            PaymentFileModel.allocation_started_at,
        )

        result = self._session.execute(
            update(PaymentFileModel)
            .where(
                PaymentFileModel.id == payment_file_id,
                or_(
                    PaymentFileModel.allocation_status != FileAllocationStatus.ALLOCATING.value,
                    last_seen.is_(None),
                    last_seen < stale_cutoff,
                ),
            )
            .values(
                allocation_status=FileAllocationStatus.ALLOCATING.value,
                allocation_token=token,
                allocation_started_at=now,
                allocation_heartbeat_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            self._session.rollback()
            exists = self._session.execute(
                select(PaymentFileModel.id).where(PaymentFileModel.id == payment_file_id)
            ).scalar_one_or_none()
            if exists is None:
                raise PaymentFileNotFoundError(str(payment_file_id))
            logger.warning(
                "allocation_already_running",
                extra={"payment_file_id": str(payment_file_id)},
            )
            raise AllocationAlreadyRunningError(str(payment_file_id))

        offset = self._session.execute(
            select(PaymentFileModel.allocation_offset).where(
                PaymentFileModel.id == payment_file_id,
            )
        ).scalar_one()
        self._session.commit()

        logger.info(
            "allocation_lock_acquired",
            extra={
                "payment_file_id": str(payment_file_id),
                "checkpoint_offset": offset,
            },
        )
        return AllocationLease(
            payment_file_id=payment_file_id,
            token=token,
            checkpoint_offset=offset,
        )

    def checkpoint(self, lease: AllocationLease, offset: int) -> None:
        """Store ``offset`` and refresh the heartbeat.

        Raises:
            AllocationAlreadyRunningError: The token no longer matches, so
                another run took the file over.  The caller must roll back.
        """
        now = self._clock.now()
        result = self._session.execute(
            update(PaymentFileModel)
            .where(
                PaymentFileModel.id == lease.payment_file_id,
                PaymentFileModel.allocation_token == lease.token,
            )
            .values(
                allocation_offset=offset,
                allocation_heartbeat_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.error(
                "allocation_lease_lost",
                extra={
                    "payment_file_id": str(lease.payment_file_id),
                    "offset": offset,
                },
            )
            raise AllocationAlreadyRunningError(str(lease.payment_file_id))

    def release(self, lease: AllocationLease, progress: AllocationProgress | None) -> None:
        """Drop the hold: ``allocated`` when complete, ``paused`` otherwise.

        With no progress (the run raised) the stored checkpoint is kept.
        """
        now = self._clock.now()
        values: dict = {
            "allocation_token": None,
            "allocation_started_at": None,
            "allocation_heartbeat_at": None,
            "updated_at": now,
        }
        if progress is not None and progress.is_complete:
            values["allocation_status"] = FileAllocationStatus.ALLOCATED.value
            values["allocation_offset"] = 0
            values["allocation_completed_at"] = now
        else:
            values["allocation_status"] = FileAllocationStatus.PAUSED.value
            if progress is not None:
                values["allocation_offset"] = progress.current_offset

        self._session.rollback()
        result = self._session.execute(
            update(PaymentFileModel)
            .where(
                PaymentFileModel.id == lease.payment_file_id,
                PaymentFileModel.allocation_token == lease.token,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount
        self._session.commit()

        if released == 0:
            # Another run holds the file now; its state is left alone.
            logger.warning(
                "allocation_release_skipped",
                extra={"payment_file_id": str(lease.payment_file_id)},
            )
            return

        logger.info(
            "allocation_lock_released",
            extra={
                "payment_file_id": str(lease.payment_file_id),
                "allocation_status": values["allocation_status"],
            },
        )
