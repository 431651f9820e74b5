"""
PaymentPayload -- typed view over a payment record's semi-structured data.

The upstream parser stores the original file columns of every payment line
in ``payment_records.raw_data``.  The allocation engine only reads a handful
of them; this module gives those fields explicit optional types instead of
ad hoc dictionary lookups scattered across services.

Pure, zero I/O.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping

from ledger_kernel.domain.dates import parse_payment_date

# Source column names as written by the payment file parser.
LAST_PAYMENT_DATE = "LAST_PAYMENT_DATE"
ACCOUNT_HOLDER_NAME = "ACCOUNT_HOLDER_NAME"
ACCOUNT_STATUS = "ACCOUNT_STATUS"
OCC_OWN = "OCC_OWN"
INDIGENT = "INDIGENT"

_EMPTY_MARKERS = frozenset({"", "N/A", "null", "undefined", "None"})


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if text in _EMPTY_MARKERS:
        return None
    return text


@dataclass(frozen=True)
class PaymentPayload:
    """Typed optional fields extracted from ``raw_data``."""

    last_payment_date_raw: str | None = None
    account_holder_name: str | None = None
    account_status: str | None = None
    occ_own: str | None = None
    indigent: bool | str | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | str | None) -> PaymentPayload:
        """Build a payload from the stored JSON value.

        Accepts the decoded mapping or a JSON-encoded string.  Unparseable
        or non-object values give an empty payload rather than raising:
        a bad payload must never block the ledger update.
        """
        if raw is None:
            return cls()
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                return cls()
        if not isinstance(raw, Mapping):
            return cls()

        indigent = raw.get(INDIGENT)
        return cls(
            last_payment_date_raw=_optional_text(raw.get(LAST_PAYMENT_DATE)),
            account_holder_name=_optional_text(raw.get(ACCOUNT_HOLDER_NAME)),
            account_status=_optional_text(raw.get(ACCOUNT_STATUS)),
            occ_own=_optional_text(raw.get(OCC_OWN)),
            indigent=indigent if isinstance(indigent, bool) else _optional_text(indigent),
        )

    @property
    def last_payment_date(self) -> date | None:
        return parse_payment_date(self.last_payment_date_raw)

    @property
    def indigent_flag(self) -> str:
        """Indigent marker normalised to the ``Y`` / ``N`` reporting form."""
        if self.indigent is True:
            return "Y"
        if self.indigent in (None, False):
            return "N"
        return str(self.indigent)
