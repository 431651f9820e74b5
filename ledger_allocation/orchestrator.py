"""
AllocationOrchestrator -- DI container and entry points for payment allocation.

Contract:
    Wires the stage services, runner, resumer, guard and selector from one
    session, one settings object and one clock.  ``process_large_payment_file``
    is the primary entry point: acquire the per-file guard, run the resumer,
    release the guard.

Architecture: ledger_allocation (top-level).  The canonical entry point for
    running allocations; the CLI is a thin shell around it.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - At most one live run per payment file (AllocationGuard).
    - The guard is always released, even when a run raises.
"""

from __future__ import annotations

import time
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import update
from sqlalchemy.orm import Session

from ledger_config import get_allocation_settings
from ledger_config.schema import AllocationSettings
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import ProcessingStatus
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.payment_file import PaymentFileModel
from ledger_kernel.models.payment_record import PaymentRecordModel

from ledger_allocation.domain.types import (
    AllocationProgress,
    AllocationStats,
    StatusMarkPolicy,
    UnmatchedAccountPolicy,
)
from ledger_allocation.selectors import AllocationDetail, AllocationSelector
from ledger_allocation.services.agent_performance import AgentPerformanceAccumulator
from ledger_allocation.services.debtor_matcher import DebtorMatcher
from ledger_allocation.services.file_guard import AllocationGuard
from ledger_allocation.services.ledger_updater import LedgerUpdater
from ledger_allocation.services.payment_history import ActorResolver, PaymentHistoryRecorder
from ledger_allocation.services.record_fetcher import RecordFetcher
from ledger_allocation.services.resumer import AllocationResumer
from ledger_allocation.services.retry import Retrier, RetryPolicy
from ledger_allocation.services.runner import (
    AllocationRunner,
    CancelCheck,
    ProgressCallback,
)
from ledger_allocation.services.status_marker import StatusMarker

logger = get_logger("allocation.orchestrator")


class AllocationOrchestrator:
    """DI container for the allocation engine.

    Contract:
        - ``from_session()`` factory creates a fully wired orchestrator.
        - ``process_large_payment_file()`` runs a guarded, resumable allocation.
        - ``allocate()`` runs a single guarded pass.
        - ``reset_failed_records()`` re-queues failed records.
        - ``allocation_stats()`` / ``can_allocate()`` / ``allocation_details()``
          are read-only.

    Non-goals:
        - Does NOT create sessions -- the caller supplies one.
    """

    def __init__(
        self,
        session: Session,
        settings: AllocationSettings,
        clock: Clock,
        runner: AllocationRunner,
        resumer: AllocationResumer,
        guard: AllocationGuard,
        selector: AllocationSelector,
    ) -> None:
        self._session = session
        self._settings = settings
        self._clock = clock
        self._runner = runner
        self._resumer = resumer
        self._guard = guard
        self._selector = selector

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        settings: AllocationSettings | None = None,
        clock: Clock | None = None,
        actor_resolver: ActorResolver | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> AllocationOrchestrator:
        """Create a fully wired AllocationOrchestrator from a session.

        Args:
            session: SQLAlchemy session; the engine commits per page.
            settings: Optional settings.  If None, ``get_allocation_settings()``.
            clock: Optional clock for deterministic testing.
            actor_resolver: Returns the acting user's id, or None.  Needed
                only to create a week's payment history container.
            sleep: Optional sleep used for retry backoff and resume delays.
        """
        effective_settings = settings or get_allocation_settings()
        effective_clock = clock or SystemClock()
        effective_sleep = sleep or time.sleep

        retrier = Retrier(
            RetryPolicy.from_settings(effective_settings.retry),
            sleep=effective_sleep,
        )

        agent_performance = None
        if effective_settings.record_agent_performance:
            agent_performance = AgentPerformanceAccumulator(
                session,
                clock=effective_clock,
                default_target=effective_settings.default_agent_target,
            )

        payment_history = None
        if effective_settings.record_payment_history:
            payment_history = PaymentHistoryRecorder(
                session,
                clock=effective_clock,
                actor_resolver=actor_resolver,
            )

        runner = AllocationRunner(
            session=session,
            fetcher=RecordFetcher(session, retrier),
            matcher=DebtorMatcher(session, retrier),
            ledger_updater=LedgerUpdater(
                session,
                retrier,
                clock=effective_clock,
                chunk_size=effective_settings.update_chunk_size,
                unmatched_policy=UnmatchedAccountPolicy(
                    effective_settings.unmatched_account_policy
                ),
            ),
            status_marker=StatusMarker(
                session,
                retrier,
                clock=effective_clock,
                chunk_size=effective_settings.status_chunk_size,
                policy=StatusMarkPolicy(effective_settings.status_mark_policy),
            ),
            settings=effective_settings,
            clock=effective_clock,
            agent_performance=agent_performance,
            payment_history=payment_history,
        )

        return cls(
            session=session,
            settings=effective_settings,
            clock=effective_clock,
            runner=runner,
            resumer=AllocationResumer(runner, effective_settings, sleep=effective_sleep),
            guard=AllocationGuard(
                session,
                clock=effective_clock,
                stale_after_seconds=effective_settings.lock_stale_after_seconds,
            ),
            selector=AllocationSelector(session),
        )

    # -------------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------------

    def process_large_payment_file(
        self,
        payment_file_id: UUID,
        on_progress: ProgressCallback | None = None,
        max_attempts: int | None = None,
        resume_from_checkpoint: bool = False,
        should_cancel: CancelCheck | None = None,
    ) -> AllocationProgress:
        """Allocate every pending record of a payment file, resuming as needed.

        Raises:
            PaymentFileNotFoundError: If the file does not exist.
            AllocationAlreadyRunningError: If another run holds the file.
        """
        with LogContext.bind(
            correlation_id=uuid4().hex,
            payment_file_id=str(payment_file_id),
        ):
            lease = self._guard.acquire(payment_file_id)
            start_offset = lease.checkpoint_offset if resume_from_checkpoint else 0

            progress: AllocationProgress | None = None
            try:
                progress = self._resumer.run(
                    payment_file_id,
                    on_progress=on_progress,
                    max_attempts=max_attempts,
                    start_offset=start_offset,
                    should_cancel=should_cancel,
                    checkpoint=lambda offset: self._guard.checkpoint(lease, offset),
                )
            finally:
                self._guard.release(lease, progress)

            logger.info(
                "payment_file_allocation_finished",
                extra={
                    "status": progress.status.value,
                    "attempts": progress.attempts,
                    "total_processed": progress.total_processed,
                    "accounts_updated": progress.accounts_updated,
                    "failed_allocations": progress.failed_allocations,
                },
            )
            return progress

    def allocate(
        self,
        payment_file_id: UUID,
        start_offset: int = 0,
        on_progress: ProgressCallback | None = None,
        should_cancel: CancelCheck | None = None,
    ) -> AllocationProgress:
        """Run a single guarded pass from ``start_offset``."""
        with LogContext.bind(
            correlation_id=uuid4().hex,
            payment_file_id=str(payment_file_id),
        ):
            lease = self._guard.acquire(payment_file_id)
            progress: AllocationProgress | None = None
            try:
                progress = self._runner.run(
                    payment_file_id,
                    start_offset=start_offset,
                    on_progress=on_progress,
                    should_cancel=should_cancel,
                    checkpoint=lambda offset: self._guard.checkpoint(lease, offset),
                )
            finally:
                self._guard.release(lease, progress)
            return progress

    def reset_failed_records(self, payment_file_id: UUID) -> int:
        """Move the file's ``failed`` records back to ``pending``.

        The stored checkpoint is cleared so a resumed run starts from the
        beginning and reaches the re-queued records.
        """
        now = self._clock.now()
        result = self._session.execute(
            update(PaymentRecordModel)
            .where(
                PaymentRecordModel.payment_file_id == payment_file_id,
                PaymentRecordModel.processing_status == ProcessingStatus.FAILED.value,
            )
            .values(
                processing_status=ProcessingStatus.PENDING.value,
                processing_error=None,
                processed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        reset = result.rowcount
        if reset:
            self._session.execute(
                update(PaymentFileModel)
                .where(PaymentFileModel.id == payment_file_id)
                .values(allocation_offset=0, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        self._session.commit()

        logger.info(
            "failed_records_reset",
            extra={"payment_file_id": str(payment_file_id), "records_reset": reset},
        )
        return reset

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def allocation_stats(self, payment_file_id: UUID) -> AllocationStats:
        return self._selector.stats(payment_file_id)

    def can_allocate(self, payment_file_id: UUID) -> bool:
        return self._selector.can_allocate(payment_file_id)

    def allocation_details(
        self,
        payment_file_id: UUID,
        status: ProcessingStatus | None = None,
        limit: int | None = None,
    ) -> list[AllocationDetail]:
        return self._selector.details(payment_file_id, status=status, limit=limit)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def settings(self) -> AllocationSettings:
        return self._settings

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def runner(self) -> AllocationRunner:
        return self._runner
