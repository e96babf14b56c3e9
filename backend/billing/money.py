"""
Money semantics:
- Amounts are decimal.Decimal end to end; columns are Numeric(12, 2).
- round2 is half-up to 2 places (tax-authority convention), applied per line.
- Floats are converted through str() so 0.1 stays 0.1.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

ZERO = Decimal("0")
TWO_PLACES = Decimal("0.01")

# Pending amounts at or below this are treated as settled
PAID_TOLERANCE = Decimal("0.01")


def to_decimal(value, field: str = "amount") -> Decimal:
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def round2(value) -> Decimal:
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def percent_of(base, percent) -> Decimal:
    """round2(base * percent / 100)"""
    return round2(to_decimal(base) * to_decimal(percent, "percent") / Decimal(100))


def money_str(value) -> str | None:
    if value is None:
        return None
    return str(round2(value))
