"""
Module: ledger_kernel.db.types
Responsibility: Annotated column type aliases and the money helpers shared by
    models and services.  Centralizes precision and rounding so that every
    amount in the engine is a Decimal rounded the same way.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.
Invariants enforced:
    - No floats anywhere.  to_money() rejects float input outright.
    - round_money() is the ONLY sanctioned rounding function for amounts.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

# 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# ISO 4217 currency code (e.g., "NGN", "USD")
Currency = Annotated[str, String(3)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Long text for descriptions and notes
LongText = Annotated[str, String(4000)]

ZERO = Decimal("0")
DEFAULT_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_money(value: Decimal | int | str | None) -> Decimal:
    """
    Convert an int, str or Decimal into a Decimal amount.

    Raises:
        TypeError: for floats (binary floats are never accepted as money).
        ValueError: for strings that are not numbers or non-finite values.
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats; use Decimal or str")
    if isinstance(value, bool):
        raise TypeError("Monetary amounts must not be booleans")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a finite monetary amount: {value!r}")
    return amount


def round_money(
    value: Decimal,
    decimal_places: int = DEFAULT_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the ONLY sanctioned rounding function for amounts.
    """
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def validate_currency(currency: str) -> str:
    """Normalize a currency code; raises ValueError unless it is three letters."""
    normalized = (currency or "").strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError(f"Invalid ISO 4217 currency code: '{currency}'")
    return normalized
