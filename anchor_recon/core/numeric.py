"""Decimal helpers: parsing amounts, canonical strings, half-up rounding."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

TWO_PLACES = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Parse an amount without going through float. Raises ValueError on garbage."""
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, bool):
        raise ValueError(f"not a decimal amount: {value!r}")
    elif isinstance(value, int):
        d = Decimal(value)
    elif isinstance(value, float):
        d = Decimal(repr(value))
    else:
        text = str(value or "").strip()
        if not text:
            raise ValueError("amount must be non-empty")
        try:
            d = Decimal(text)
        except InvalidOperation as e:
            raise ValueError(f"not a decimal amount: {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"amount must be finite: {value!r}")
    return d


def canonical(value: Decimal) -> str:
    """Fixed-point string for storage; keeps the scale, so it round-trips through Decimal unchanged."""
    if value == 0:
        value = abs(value)
    return format(value, "f")


def round2(value: Decimal | float | int) -> Decimal:
    """Round half-up to 2 decimals."""
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def round_int(value: Decimal) -> int:
    """Round half-up to the nearest integer."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
