from decimal import Decimal

import pytest

from kidjobs.money import cents_str, from_cents, to_cents, to_decimal, within_tolerance


def test_to_decimal_normalises_inputs() -> None:
    assert to_decimal("10") == Decimal("10.00")
    assert to_decimal(" $1,234.5 ") == Decimal("1234.50")
    assert to_decimal(2.005) == Decimal("2.01")
    assert to_decimal(Decimal("0.125")) == Decimal("0.13")


def test_to_decimal_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        to_decimal("ten dollars")
    with pytest.raises(ValueError):
        to_decimal("NaN")
    with pytest.raises(TypeError):
        to_decimal(True)
    with pytest.raises(TypeError):
        to_decimal(None)  # type: ignore[arg-type]


def test_cents_conversions() -> None:
    assert to_cents("10.00") == 1000
    assert to_cents(2.5) == 250
    assert from_cents(250) == Decimal("2.50")
    assert cents_str(1000) == "10.00"
    assert cents_str(5) == "0.05"
    assert cents_str(-200) == "-2.00"


def test_within_tolerance_allows_one_cent() -> None:
    assert within_tolerance(1000, 1000)
    assert within_tolerance(1001, 1000)
    assert within_tolerance(999, 1000)
    assert not within_tolerance(1002, 1000)
