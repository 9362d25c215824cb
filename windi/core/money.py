"""
Money normalization for the billing ledger.

Every amount that reaches the ledger goes through normalize_money() so
subscriptions, payments and commission rows agree on two-decimal values.
Commission and points are whole units rounded half-up.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


CENTS = Decimal("0.01")
UNIT = Decimal("1")
ZERO = Decimal("0")
POINTS_DIVISOR = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Coerce numbers and numeric strings to Decimal; anything else is zero."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return ZERO
    if not result.is_finite():
        return ZERO
    return result


def normalize_money(value: Any) -> Decimal:
    """Round to the store's canonical precision (cents, half-up)."""
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def round_units(value: Any) -> Decimal:
    """Round to whole currency units, half-up."""
    return to_decimal(value).quantize(UNIT, rounding=ROUND_HALF_UP)


def commission_for(amount: Any, rate: Any) -> Decimal:
    """
    Commission owed on a paid subscription amount.

    >>> commission_for(12999, Decimal("0.25"))
    Decimal('3250')
    """
    return round_units(to_decimal(amount) * to_decimal(rate))


def points_for(amount: Any) -> int:
    """Loyalty points: one point per 100 currency units, half-up."""
    return int(round_units(to_decimal(amount) / POINTS_DIVISOR))


def positive_part(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO
