"""
Processing-rate and ETA estimation from successive progress snapshots.

Pure, zero I/O.  Consumers polling ``total_processed`` at a fixed interval
feed each reading into ``ProgressRateEstimator.update``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

SMOOTHING_WEIGHT = 0.3


@dataclass(frozen=True)
class RateEstimate:
    records_per_second: float
    eta_seconds: int | None

    @property
    def eta_text(self) -> str:
        return format_eta(self.eta_seconds)


def format_eta(seconds: int | None) -> str:
    """Human readable remaining time, e.g. ``"45 seconds"`` or ``"2h 5m"``."""
    if seconds is None:
        return "calculating..."
    if seconds < 60:
        return f"{seconds} seconds"
    if seconds < 3600:
        return f"{math.ceil(seconds / 60)} minutes"
    hours = seconds // 3600
    minutes = math.ceil((seconds % 3600) / 60)
    return f"{hours}h {minutes}m"


class ProgressRateEstimator:
    """Exponential moving average of records per second.

    The first non-zero reading seeds the average; later readings are blended
    as ``0.7 * previous + 0.3 * current``.
    """

    def __init__(self, total_records: int):
        self._total_records = total_records
        self._last_processed = 0
        self._rate = 0.0

    @property
    def rate(self) -> float:
        return self._rate

    def update(self, total_processed: int, elapsed_seconds: float = 1.0) -> RateEstimate:
        delta = max(total_processed - self._last_processed, 0)
        self._last_processed = total_processed
        current = delta / elapsed_seconds if elapsed_seconds > 0 else 0.0

        if self._rate > 0:
            self._rate = self._rate * (1 - SMOOTHING_WEIGHT) + current * SMOOTHING_WEIGHT
        else:
            self._rate = current

        if self._rate <= 0:
            return RateEstimate(records_per_second=0.0, eta_seconds=None)

        remaining = max(self._total_records - total_processed, 0)
        return RateEstimate(
            records_per_second=self._rate,
            eta_seconds=math.ceil(remaining / self._rate),
        )
