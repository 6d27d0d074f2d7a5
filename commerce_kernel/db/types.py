"""
Module: commerce_kernel.db.types
Responsibility: the money helpers every service uses, so that amounts are
    rounded identically system-wide.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for money.  Amounts are Decimal with MONEY_DECIMAL_PLACES.
    - round_money() is the only sanctioned rounding function.
"""

from decimal import ROUND_HALF_UP, Decimal

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)


def round_money(amount: Decimal) -> Decimal:
    """Round an amount to MONEY_DECIMAL_PLACES with ROUND_HALF_UP."""
    return amount.quantize(_QUANTUM, rounding=DEFAULT_ROUNDING)


def to_money(value: Decimal | int | str) -> Decimal:
    """
    Coerce an int, str or Decimal into a rounded money Decimal.

    Raises:
        TypeError: if value is a float (floats are never accepted for money).
        decimal.InvalidOperation: if a string is not numeric.
    """
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats")
    return round_money(Decimal(value))
