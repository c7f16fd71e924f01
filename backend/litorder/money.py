from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

_CENT = Decimal("0.01")


def cents_to_decimal(cents: Optional[int]) -> Optional[Decimal]:
    """Authoritative storage is integer cents; this is for presentation only."""
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(_CENT)


def decimal_to_cents(value) -> int:
    """
    Convert a decimal amount ("25.99", 25.99, Decimal) to cents, half-up.

    Raises ValueError for anything that is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, AttributeError):
        raise ValueError("amount must be a number")
    if not amount.is_finite():
        raise ValueError("amount must be a number")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(cents: Optional[int]) -> Optional[str]:
    """JSON-friendly decimal string ("519.80")."""
    value = cents_to_decimal(cents)
    return None if value is None else str(value)
