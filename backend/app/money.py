# Overview: Conversion between API decimal amounts and stored integer cents.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .validation import ValidationError

_CENT = Decimal("0.01")


def to_cents(value, field: str = "amount", *, default: int | None = None) -> int | None:
    """
    Convert an API amount (int, float, or numeric string) to integer cents.

    Amounts are rounded half-up to two places first, so 1.005 -> 101.
    None/"" return `default`. Booleans and non-numeric input are rejected.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return int(amount.quantize(_CENT, rounding=ROUND_HALF_UP) * 100)


def lenient_cents(value, default: int = 0) -> int:
    """Like to_cents, but invalid input falls back to `default` instead of failing."""
    try:
        cents = to_cents(value)
    except ValidationError:
        return default
    return default if cents is None else cents


def from_cents(cents: int | None) -> float | None:
    """Integer cents -> JSON-friendly amount with two decimals."""
    if cents is None:
        return None
    return float(Decimal(cents) / 100)
