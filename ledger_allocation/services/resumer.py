"""
AllocationResumer -- repeats runner passes until a file is fully allocated.

Contract:
    Calls the runner from the last ``current_offset`` until a pass completes,
    is aborted, or ``max_attempts`` passes have run, sleeping
    ``resume_delay_seconds`` between passes.  Counters are summed across
    passes; snapshots relayed to ``on_progress`` are cumulative and never
    decrease.

Architecture: ledger_allocation/services.
"""

from __future__ import annotations

import time
from typing import Callable
from uuid import UUID

from ledger_config.schema import AllocationSettings
from ledger_kernel.logging_config import get_logger

from ledger_allocation.domain.types import AllocationProgress, AllocationStatus
from ledger_allocation.services.runner import (
    AllocationRunner,
    CancelCheck,
    Checkpoint,
    ProgressCallback,
)

logger = get_logger("allocation.resumer")

_TERMINAL = (AllocationStatus.COMPLETE, AllocationStatus.ABORTED)


class AllocationResumer:

    def __init__(
        self,
        runner: AllocationRunner,
        settings: AllocationSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._runner = runner
        self._settings = settings or AllocationSettings()
        self._sleep = sleep

    def run(
        self,
        payment_file_id: UUID,
        on_progress: ProgressCallback | None = None,
        max_attempts: int | None = None,
        start_offset: int = 0,
        should_cancel: CancelCheck | None = None,
        checkpoint: Checkpoint | None = None,
    ) -> AllocationProgress:
        limit = max_attempts if max_attempts is not None else self._settings.max_resume_attempts
        limit = max(limit, 1)
        max_errors = self._settings.max_reported_errors

        cumulative: AllocationProgress | None = None
        offset = start_offset

        for attempt in range(1, limit + 1):
            relay = self._relay(cumulative, on_progress, max_errors)
            result = self._runner.run(
                payment_file_id,
                start_offset=offset,
                on_progress=relay,
                should_cancel=should_cancel,
                checkpoint=checkpoint,
            )
            cumulative = result if cumulative is None else cumulative.combine(result, max_errors)

            if result.status in _TERMINAL:
                break

            offset = result.current_offset
            if attempt < limit:
                logger.info(
                    "allocation_resume_scheduled",
                    extra={
                        "attempt": attempt,
                        "max_attempts": limit,
                        "next_offset": offset,
                        "delay_seconds": self._settings.resume_delay_seconds,
                    },
                )
                self._sleep(self._settings.resume_delay_seconds)
        else:
            logger.warning(
                "allocation_resume_attempts_exhausted",
                extra={"attempts": limit, "current_offset": offset},
            )

        return cumulative

    @staticmethod
    def _relay(
        base: AllocationProgress | None,
        on_progress: ProgressCallback | None,
        max_errors: int,
    ) -> ProgressCallback | None:
        if on_progress is None:
            return None
        if base is None:
            return on_progress

        def relay(snapshot: AllocationProgress) -> None:
            on_progress(base.combine(snapshot, max_errors))

        return relay
