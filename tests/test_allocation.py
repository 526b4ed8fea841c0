import pytest

from kidjobs.allocation import (
    EnabledAccounts,
    Percentages,
    Split,
    redistribute,
    split_by_percentages,
    validate_percentages,
    validate_split,
)
from kidjobs.exceptions import ValidationError


def test_split_ten_dollars_by_default_percentages() -> None:
    split = split_by_percentages(1000, Percentages(spending=20, savings=30, roth_ira=25, brokerage=25))

    assert split == Split(spending=200, savings=300, roth_ira=250, brokerage=250)
    assert split.total_cents == 1000


def test_split_assigns_rounding_residual_to_largest_percentage() -> None:
    # 33/33/34 of $0.10 rounds to 3 + 3 + 3 cents.
    split = split_by_percentages(10, Percentages(spending=33, savings=33, roth_ira=34))
    assert split.total_cents == 10
    assert split.roth_ira == 4

    # Ties go to the earliest account.
    tie = split_by_percentages(1, Percentages(spending=40, savings=40, roth_ira=20))
    assert tie == Split(spending=1)


def test_split_always_sums_to_amount() -> None:
    percentages = Percentages(spending=25, savings=35, roth_ira=20, brokerage=20)
    for amount in (1, 7, 99, 333, 1001, 123457):
        assert split_by_percentages(amount, percentages).total_cents == amount


def test_validate_split_accepts_one_cent_drift() -> None:
    assert validate_split(1000, Split(spending=334, savings=333, roth_ira=333, brokerage=1)).total_cents == 1001


def test_validate_split_rejects_wrong_total() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_split(1000, Split(spending=100, savings=100, roth_ira=100, brokerage=100))
    assert excinfo.value.code == "INVALID_ALLOCATION"
    assert "$4.00" in excinfo.value.message
    assert "$10.00" in excinfo.value.message


def test_validate_split_rejects_negative_amounts() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_split(1000, Split(spending=1200, savings=-200))
    assert excinfo.value.code == "INVALID_ALLOCATION"


def test_split_minus_and_negated() -> None:
    old = Split(spending=200, savings=300, roth_ira=250, brokerage=250)
    new = Split(spending=0, savings=500, roth_ira=250, brokerage=250)
    assert new.minus(old) == Split(spending=-200, savings=200)
    assert old.negated().total_cents == -1000


@pytest.mark.parametrize(
    ("enabled", "expected"),
    [
        (EnabledAccounts(True, True, False, False), Percentages(50, 50, 0, 0)),
        (EnabledAccounts(True, True, True, False), Percentages(34, 33, 33, 0)),
        (EnabledAccounts(False, True, True, True), Percentages(0, 34, 33, 33)),
        (EnabledAccounts(True, True, True, True), Percentages(25, 25, 25, 25)),
        (EnabledAccounts(False, False, False, True), Percentages(0, 0, 0, 100)),
    ],
)
def test_redistribute_equal_shares(enabled: EnabledAccounts, expected: Percentages) -> None:
    result = redistribute(enabled)
    assert result == expected
    assert result.total == 100


def test_redistribute_requires_an_enabled_account() -> None:
    with pytest.raises(ValidationError) as excinfo:
        redistribute(EnabledAccounts(False, False, False, False))
    assert excinfo.value.code == "NO_ACCOUNTS_ENABLED"


def test_validate_percentages_enabled_aware() -> None:
    enabled = EnabledAccounts(True, True, False, False)
    assert validate_percentages(Percentages(70, 30, 0, 0), enabled).total == 100

    with pytest.raises(ValidationError) as excinfo:
        validate_percentages(Percentages(60, 30, 0, 0), enabled)
    assert excinfo.value.code == "INVALID_PERCENTAGES"
    assert excinfo.value.message == "Percentages must sum to 100 (got 90)."

    with pytest.raises(ValidationError):
        validate_percentages(Percentages(50, 40, 10, 0), enabled)


def test_validate_percentages_without_account_types_counts_all_four() -> None:
    assert validate_percentages(Percentages(25, 35, 20, 20)).total == 100
    with pytest.raises(ValidationError) as excinfo:
        validate_percentages(Percentages(30, 35, 20, 20))
    assert "got 105" in excinfo.value.message


def test_validate_percentages_range() -> None:
    with pytest.raises(ValidationError):
        validate_percentages(Percentages(120, -20, 0, 0))


def test_percentages_from_mapping_fills_missing_keys() -> None:
    assert Percentages.from_mapping({"spending": 60, "savings": 40}) == Percentages(60, 40, 0, 0)
