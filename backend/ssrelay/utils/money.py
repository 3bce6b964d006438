"""Money helpers. Prices are integer cents inside the core."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from ..errors import ValidationError

MIN_PRICE_CENTS = 1


def to_cents(value: Any) -> int:
    """Convert a dollar amount (str, int, float or Decimal) to cents"""
    if value is None or value == '':
        return 0
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid money amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid money amount: {value!r}")
    return int((amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def quantize_cents(amount: Decimal) -> int:
    return int(amount.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def format_cents(cents: int) -> str:
    return f"{Decimal(cents) / 100:.2f}"


def clamp_price(cents: int) -> int:
    return max(MIN_PRICE_CENTS, cents)


def percent_change(old_cents: int, new_cents: int) -> float:
    if old_cents == 0:
        return 0.0
    return round((new_cents - old_cents) / old_cents * 100, 1)
