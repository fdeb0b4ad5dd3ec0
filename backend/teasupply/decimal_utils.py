# Overview: Fixed-point helpers for kilogram quantities and money (two decimal places).

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

# Numeric(12, 2) upper bound
MAX_AMOUNT = Decimal("9999999999.99")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_decimal(value, field: str = "value") -> Decimal:
    """
    Parse user or storage input into a two-place Decimal.

    Floats go through str() so 0.1 stays 0.10 rather than the binary
    expansion. Booleans, NaN and infinities are rejected.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            raise ValidationError(f"{field} must be a number")
        try:
            parsed = Decimal(text)
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be a number")
    if not parsed.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    result = quantize(parsed)
    if abs(result) > MAX_AMOUNT:
        raise ValidationError(f"{field} is out of range")
    return result


def to_positive_decimal(value, field: str = "value") -> Decimal:
    result = to_decimal(value, field)
    if result <= ZERO:
        raise ValidationError(f"{field} must be greater than 0")
    return result


def coerce_sum(value) -> Decimal:
    """Aggregate results: NULL or unparseable values count as zero."""
    if value is None:
        return ZERO
    try:
        return to_decimal(value)
    except ValidationError:
        return ZERO


def decimal_to_str(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return str(quantize(value))
