"""
Module: ledger_kernel.db.types
Responsibility: Annotated column type aliases and money helpers shared by all
    models and services.
Architecture position: Kernel > DB.  MUST NOT import from models/ or outer
    packages.

Invariants enforced:
    CRITICAL: No floats for money.  Amounts arriving from payload or driver
    values are converted with ``to_money()``.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated, Any

from sqlalchemy import Numeric, String

# 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Debtor account numbers as issued by the billing system
AccountNumber = Annotated[str, String(64)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]

ZERO = Decimal("0")
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_money(value: Any) -> Decimal:
    """Convert a stored or payload amount to Decimal.

    None and unparseable values become zero -- a record without an amount
    is allocated as a zero payment rather than rejected.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO


def round_money(value: Decimal, decimal_places: int = 2) -> Decimal:
    """Round a monetary value for reporting."""
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=DEFAULT_ROUNDING)
