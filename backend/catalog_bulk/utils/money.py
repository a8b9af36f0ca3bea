"""Decimal helpers for catalog prices."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def parse_price(raw: object) -> Decimal:
    """Parse a stored or submitted price.

    Raises ValueError when it is not a finite number or has more digits than
    cent rounding can represent.
    """
    if raw is None:
        raise ValueError("price is empty")
    text = str(raw).strip()
    if not text:
        raise ValueError("price is empty")
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"'{text}' is not a number") from exc
    if not value.is_finite():
        raise ValueError(f"'{text}' is not a number")
    try:
        round_price(value)
    except InvalidOperation as exc:
        raise ValueError(f"'{text}' is too large to be a price") from exc
    return value


def round_price(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def clamp_price(value: Decimal) -> Decimal:
    """Round half-up to cents and clamp at zero."""
    return max(ZERO, round_price(value))


def format_price(value: Decimal) -> str:
    return f"{round_price(value):.2f}"
