"""
Date normalisation for payment files and reporting partitions.

Responsibility:
    Converts the raw ``LAST_PAYMENT_DATE`` value carried in a payment record's
    payload into an optional ``date``, and derives the calendar keys used by
    the side channels (month start for agent performance, ISO week start and
    week number for the weekly history container).

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Invariants enforced:
    - Only an 8-digit ``YYYYMMDD`` value naming a real calendar day is
      accepted.  Everything else ("", "N/A", "null", "2025-03-15",
      "20251301") yields ``None``.  Callers treat ``None`` as "leave the
      stored date untouched" -- no sentinel is ever produced.
"""

from __future__ import annotations

import re
from datetime import date, timedelta
from typing import Any

_SOURCE_DATE_PATTERN = re.compile(r"[0-9]{8}")


def parse_payment_date(raw: Any) -> date | None:
    """Parse a source-formatted payment date.

    Args:
        raw: The raw payload value.  Strings and integers are accepted;
            surrounding whitespace is ignored.

    Returns:
        The parsed ``date`` (``date.isoformat()`` gives ``YYYY-MM-DD``),
        or None when the value is missing or malformed.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        raw = str(raw)
    if not isinstance(raw, str):
        return None

    value = raw.strip()
    if not _SOURCE_DATE_PATTERN.fullmatch(value):
        return None

    try:
        return date(int(value[0:4]), int(value[4:6]), int(value[6:8]))
    except ValueError:
        return None


def week_start(day: date) -> date:
    """Return the Monday of the ISO week containing ``day``."""
    return day - timedelta(days=day.weekday())


def month_start(day: date) -> date:
    """Return the first day of the month containing ``day``."""
    return day.replace(day=1)


def iso_week_number(day: date) -> int:
    return day.isocalendar()[1]
