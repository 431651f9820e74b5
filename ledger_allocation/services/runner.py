"""
AllocationRunner -- page loop with checkpointing, time budget and circuit breaker.

Contract:
    ``run()`` processes a payment file page by page from ``start_offset``:
    fetch -> deduplicate -> match -> ledger -> agents -> history -> status,
    then commits the page together with its checkpoint and emits a progress
    snapshot.  It stops when no pending records remain (complete), when the
    time budget is spent, the circuit breaker trips or the window passes the
    last record with records still pending (paused), or when the caller
    cancels or the file lease is lost (aborted).

Architecture: ledger_allocation/services.  Composes the stage services.

Invariants enforced:
    - A page's ledger writes, status transitions and checkpoint commit
      together; a page-level failure rolls all of them back.
    - A failing page is retried in place.  Consecutive page failures open
      the circuit breaker and pause the run with ``current_offset`` at the
      failing page, so resuming never skips it.
    - COMPLETE means no pending record remains.  Records left pending
      behind the window (a status chunk that could not be written) pause the
      run with ``current_offset`` 0 so the next pass sweeps them up.
    - A lost file lease rolls the page back and aborts; the run never keeps
      writing to a file another run holds.
    - All elapsed time is measured with the injected Clock.
    - No exception escapes ``run()`` under normal operation; failures are
      reported through the returned snapshot.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Callable, Mapping, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ledger_config.schema import AllocationSettings
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import DebtorAccount, PaymentRecord
from ledger_kernel.exceptions import (
    AllocationAlreadyRunningError,
    CircuitBreakerOpenError,
    MissingAccountError,
)
from ledger_kernel.logging_config import LogContext, get_logger

from ledger_allocation.domain.dedup import (
    MISSING_ACCOUNT_NUMBER,
    deduplicate_latest,
    without_account_number,
)
from ledger_allocation.domain.types import (
    AllocationErrorEntry,
    AllocationProgress,
    AllocationStatus,
    AllocationTally,
    bounded_errors,
)
from ledger_allocation.services.agent_performance import AgentPerformanceAccumulator
from ledger_allocation.services.debtor_matcher import DebtorMatcher
from ledger_allocation.services.ledger_updater import LedgerUpdater
from ledger_allocation.services.payment_history import PaymentHistoryRecorder
from ledger_allocation.services.record_fetcher import RecordFetcher
from ledger_allocation.services.status_marker import StatusMarker

logger = get_logger("allocation.runner")

ProgressCallback = Callable[[AllocationProgress], None]
CancelCheck = Callable[[], bool]
Checkpoint = Callable[[int], None]


class AllocationRunner:
    """Runs one allocation pass over a payment file.

    Non-goals:
        - Does NOT hold the per-file lock -- the orchestrator does.
        - Does NOT retry whole passes -- the resumer does.
    """

    def __init__(
        self,
        session: Session,
        fetcher: RecordFetcher,
        matcher: DebtorMatcher,
        ledger_updater: LedgerUpdater,
        status_marker: StatusMarker,
        settings: AllocationSettings | None = None,
        clock: Clock | None = None,
        agent_performance: AgentPerformanceAccumulator | None = None,
        payment_history: PaymentHistoryRecorder | None = None,
    ):
        self._session = session
        self._fetcher = fetcher
        self._matcher = matcher
        self._ledger = ledger_updater
        self._status = status_marker
        self._settings = settings or AllocationSettings()
        self._clock = clock or SystemClock()
        self._agents = agent_performance
        self._history = payment_history

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(
        self,
        payment_file_id: UUID,
        start_offset: int = 0,
        on_progress: ProgressCallback | None = None,
        should_cancel: CancelCheck | None = None,
        checkpoint: Checkpoint | None = None,
    ) -> AllocationProgress:
        settings = self._settings
        page_size = settings.page_size
        started_at = self._clock.now()
        run_id = uuid4().hex

        progress = AllocationProgress.initial(start_offset)
        offset = start_offset
        consecutive_failures = 0
        stop_error: AllocationErrorEntry | None = None

        with LogContext.bind(payment_file_id=str(payment_file_id), run_id=run_id):
            logger.info(
                "allocation_run_started",
                extra={"start_offset": start_offset, "page_size": page_size},
            )

            while True:
                try:
                    pending = self._fetcher.count_pending(payment_file_id)
                    if pending == 0:
                        status = AllocationStatus.COMPLETE
                        break
                    if offset >= self._fetcher.count_records(payment_file_id):
                        status = AllocationStatus.PAUSED
                        logger.warning(
                            "allocation_pending_behind_window",
                            extra={"offset": offset, "pending": pending},
                        )
                        offset = 0
                        break
                    if should_cancel is not None and should_cancel():
                        status = AllocationStatus.ABORTED
                        logger.info("allocation_run_cancelled", extra={"offset": offset})
                        break
                    if self._elapsed_seconds(started_at) >= settings.max_execution_seconds:
                        status = AllocationStatus.PAUSED
                        logger.info(
                            "allocation_time_budget_exhausted",
                            extra={
                                "offset": offset,
                                "max_execution_seconds": settings.max_execution_seconds,
                            },
                        )
                        break

                    tally = self._process_page(payment_file_id, offset)
                    if checkpoint is not None:
                        checkpoint(offset + page_size)
                    self._session.commit()
                except AllocationAlreadyRunningError as exc:
                    self._session.rollback()
                    stop_error = AllocationErrorEntry(None, str(exc), exc.code)
                    status = AllocationStatus.ABORTED
                    logger.error("allocation_run_lease_lost", extra={"offset": offset})
                    break
                except Exception:
                    self._session.rollback()
                    consecutive_failures += 1
                    logger.warning(
                        "allocation_page_failed",
                        exc_info=True,
                        extra={
                            "offset": offset,
                            "consecutive_failures": consecutive_failures,
                        },
                    )
                    if consecutive_failures >= settings.circuit_breaker_threshold:
                        breaker = CircuitBreakerOpenError(
                            consecutive_failures, settings.circuit_breaker_threshold,
                        )
                        stop_error = AllocationErrorEntry(None, str(breaker), breaker.code)
                        status = AllocationStatus.PAUSED
                        logger.error(
                            "allocation_circuit_breaker_open",
                            extra={
                                "offset": offset,
                                "consecutive_failures": consecutive_failures,
                            },
                        )
                        break
                    continue

                consecutive_failures = 0
                offset += page_size
                progress = replace(
                    progress.absorb(tally, settings.max_reported_errors),
                    current_offset=offset,
                    total_time_ms=self._elapsed_ms(started_at),
                )
                self._emit(on_progress, progress)

            progress = replace(
                progress,
                status=status,
                is_complete=status == AllocationStatus.COMPLETE,
                current_offset=offset,
                total_time_ms=self._elapsed_ms(started_at),
            )
            if stop_error is not None:
                errors, dropped = bounded_errors(
                    progress.errors,
                    (stop_error,),
                    settings.max_reported_errors,
                )
                progress = replace(
                    progress,
                    errors=errors,
                    errors_dropped=progress.errors_dropped + dropped,
                )
            self._emit(on_progress, progress)

            logger.info(
                "allocation_run_finished",
                extra={
                    "status": progress.status.value,
                    "current_offset": progress.current_offset,
                    "total_processed": progress.total_processed,
                    "accounts_updated": progress.accounts_updated,
                    "accounts_created": progress.accounts_created,
                    "failed_allocations": progress.failed_allocations,
                    "pages_processed": progress.pages_processed,
                    "total_time_ms": progress.total_time_ms,
                },
            )
            return progress

    # -------------------------------------------------------------------------
    # Page
    # -------------------------------------------------------------------------

    def _process_page(self, payment_file_id: UUID, offset: int) -> AllocationTally:
        records = self._fetcher.fetch(payment_file_id, self._settings.page_size, offset)
        if not records:
            return AllocationTally()

        latest = deduplicate_latest(records)
        unkeyed = self._unkeyed_tally(records)
        debtors = self._matcher.match(r.account_number for r in latest)
        ledger = self._ledger.apply(latest, debtors)

        known: dict[str, DebtorAccount] = dict(debtors)
        known.update((d.account_number, d) for d in ledger.created_accounts)

        self._credit_agents(latest, debtors)
        self._record_history(latest, known)
        marks = self._status.mark(records, ledger.failure_reasons())

        logger.info(
            "allocation_page_processed",
            extra={
                "offset": offset,
                "records": len(records),
                "accounts": len(latest),
                "accounts_updated": ledger.tally.accounts_updated,
                "failed_allocations": (
                    ledger.tally.failed_allocations + unkeyed.failed_allocations
                ),
                "marked_processed": marks.marked_processed,
                "marked_failed": marks.marked_failed,
            },
        )
        return (
            AllocationTally(total_processed=len(records))
            .plus(unkeyed)
            .plus(ledger.tally)
            .plus(AllocationTally(errors=marks.errors))
        )

    @staticmethod
    def _unkeyed_tally(records: Sequence[PaymentRecord]) -> AllocationTally:
        # Each line without an account number is its own failed allocation.
        missing = without_account_number(records)
        if missing:
            logger.info("records_without_account_number", extra={"count": len(missing)})
        return AllocationTally(
            failed_allocations=len(missing),
            errors=tuple(
                AllocationErrorEntry(None, MISSING_ACCOUNT_NUMBER, MissingAccountError.code)
                for _ in missing
            ),
        )

    def _credit_agents(
        self,
        records: Sequence[PaymentRecord],
        debtors: Mapping[str, DebtorAccount],
    ) -> None:
        if self._agents is None:
            return
        self._agents.credit(records, debtors)

    def _record_history(
        self,
        records: Sequence[PaymentRecord],
        debtors: Mapping[str, DebtorAccount],
    ) -> None:
        if self._history is None:
            return
        try:
            with self._session.begin_nested():
                self._history.record(records, debtors)
        except Exception:
            logger.warning("payment_history_failed", exc_info=True)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _elapsed_seconds(self, started_at: datetime) -> float:
        return (self._clock.now() - started_at).total_seconds()

    def _elapsed_ms(self, started_at: datetime) -> int:
        return int(self._elapsed_seconds(started_at) * 1000)

    @staticmethod
    def _emit(on_progress: ProgressCallback | None, progress: AllocationProgress) -> None:
        if on_progress is None:
            return
        try:
            on_progress(progress)
        except Exception:
            logger.warning("progress_callback_failed", exc_info=True)
