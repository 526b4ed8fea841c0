"""Utilities for working with monetary values in KidJobs."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")
ALLOCATION_TOLERANCE_CENTS = 1

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike) -> Decimal:
    """Convert ``value`` to a :class:`~decimal.Decimal` with two decimal places."""

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise TypeError("Booleans are not amounts.")
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip().lstrip("$").replace(",", ""))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid amount: {value!r}") from exc
    else:
        raise TypeError(f"Unsupported amount type: {type(value)!r}")

    if not result.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return result.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: AmountLike) -> int:
    """Return ``value`` as an integer number of cents."""

    return int(to_decimal(value) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def cents_str(cents: int) -> str:
    """Serialise cents as a plain decimal string with two fractional digits (``"12.34"``)."""

    return f"{from_cents(cents):.2f}"


def within_tolerance(total_cents: int, expected_cents: int) -> bool:
    """Return whether two cent totals agree to within one cent."""

    return abs(total_cents - expected_cents) <= ALLOCATION_TOLERANCE_CENTS
