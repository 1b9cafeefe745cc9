"""
Module: saldo_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers for money columns.
    Centralizes precision so that every model and service agrees on it.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Two decimal places for every amount (the store keeps Numeric(12, 2)).
    - round_money() is the ONLY sanctioned rounding function.
    - No floats: to_money() rejects float input, and NaN or Infinity too.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

# Signed saldo amount, PLN with grosz precision
Money = Annotated[Decimal, Numeric(12, 2)]

# Short identifier strings (statuses, kinds)
ShortCode = Annotated[str, String(50)]

# Free text (descriptions, justifications)
LongText = Annotated[str, String(2000)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary amount to the stored precision."""
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=rounding)


def to_money(value: Decimal | int | str) -> Decimal:
    """
    Coerce caller input to a rounded Decimal.

    Raises:
        TypeError: on float input (floats are never accepted for money).
        ValueError: on a non-numeric string, or on NaN / Infinity.
    """
    if isinstance(value, float):
        raise TypeError("Monetary amounts must be Decimal, int or str, not float")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(value)
        except InvalidOperation as exc:
            raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Monetary amounts must be finite, got {value!r}")
    return round_money(value)
