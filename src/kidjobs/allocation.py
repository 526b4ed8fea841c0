"""Allocation arithmetic for splitting job payments across sub-accounts.

Everything in this module is pure: it works on integer cents and integer
percentages and never touches the database.  The service layer feeds it the
stored settings and applies the resulting splits to a child's balances.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterator, Mapping, Tuple

from .exceptions import ValidationError
from .money import cents_str, within_tolerance

# Fixed order used for redistribution and tie breaking.
ACCOUNT_KEYS: Tuple[str, ...] = ("spending", "savings", "roth_ira", "brokerage")

ACCOUNT_LABELS: Dict[str, str] = {
    "spending": "Spending",
    "savings": "Savings",
    "roth_ira": "Roth IRA",
    "brokerage": "Brokerage",
}


@dataclass(slots=True, frozen=True)
class Percentages:
    """Integer percentage split across the four sub-accounts."""

    spending: int = 0
    savings: int = 0
    roth_ira: int = 0
    brokerage: int = 0

    @classmethod
    def from_mapping(cls, values: Mapping[str, int]) -> "Percentages":
        return cls(**{key: int(values.get(key, 0) or 0) for key in ACCOUNT_KEYS})

    def __iter__(self) -> Iterator[Tuple[str, int]]:
        for key in ACCOUNT_KEYS:
            yield key, getattr(self, key)

    def as_dict(self) -> Dict[str, int]:
        return dict(self)

    @property
    def total(self) -> int:
        return sum(value for _, value in self)


@dataclass(slots=True, frozen=True)
class Split:
    """Dollar amounts, in cents, assigned to each sub-account."""

    spending: int = 0
    savings: int = 0
    roth_ira: int = 0
    brokerage: int = 0

    def __iter__(self) -> Iterator[Tuple[str, int]]:
        for key in ACCOUNT_KEYS:
            yield key, getattr(self, key)

    def as_dict(self) -> Dict[str, int]:
        return dict(self)

    @property
    def total_cents(self) -> int:
        return sum(value for _, value in self)

    def minus(self, other: "Split") -> "Split":
        """Return the per-account difference ``self - other``."""

        return Split(**{key: getattr(self, key) - getattr(other, key) for key in ACCOUNT_KEYS})

    def negated(self) -> "Split":
        return Split(**{key: -value for key, value in self})


@dataclass(slots=True, frozen=True)
class EnabledAccounts:
    """Family-level toggles for which sub-accounts exist."""

    spending: bool = True
    savings: bool = True
    roth_ira: bool = False
    brokerage: bool = False

    def keys(self) -> Tuple[str, ...]:
        return tuple(key for key in ACCOUNT_KEYS if getattr(self, key))

    @property
    def any_enabled(self) -> bool:
        return bool(self.keys())

    @property
    def all_enabled(self) -> bool:
        return len(self.keys()) == len(ACCOUNT_KEYS)


def _round_share(amount_cents: int, percentage: int) -> int:
    share = (Decimal(amount_cents) * Decimal(percentage)) / Decimal(100)
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def split_by_percentages(amount_cents: int, percentages: Percentages) -> Split:
    """Split ``amount_cents`` by ``percentages`` rounding each share half-up to the cent.

    Leftover cents from rounding are folded into the account with the largest
    percentage (earliest in :data:`ACCOUNT_KEYS` on ties) so the split always
    sums to the job amount.
    """

    shares = {key: _round_share(amount_cents, pct) for key, pct in percentages}
    if percentages.total == 100:
        residual = amount_cents - sum(shares.values())
        if residual:
            largest = max(ACCOUNT_KEYS, key=lambda key: (getattr(percentages, key), -ACCOUNT_KEYS.index(key)))
            shares[largest] += residual
    return Split(**shares)


def validate_split(amount_cents: int, split: Split) -> Split:
    """Ensure a caller supplied split adds up to the job amount within one cent."""

    for key, value in split:
        if value < 0:
            raise ValidationError(
                f"{ACCOUNT_LABELS[key]} amount cannot be negative.",
                code="INVALID_ALLOCATION",
            )
    total = split.total_cents
    if not within_tolerance(total, amount_cents):
        raise ValidationError(
            f"Total allocation (${cents_str(total)}) must equal job amount (${cents_str(amount_cents)}).",
            code="INVALID_ALLOCATION",
        )
    return split


def redistribute(enabled: EnabledAccounts) -> Percentages:
    """Spread 100% equally over the enabled accounts.

    The remainder of the integer division goes to the first enabled account in
    the fixed order; disabled accounts receive 0%.
    """

    keys = enabled.keys()
    if not keys:
        raise ValidationError("At least one account type must be enabled.", code="NO_ACCOUNTS_ENABLED")
    equal_share = 100 // len(keys)
    remainder = 100 - equal_share * len(keys)
    values = {key: 0 for key in ACCOUNT_KEYS}
    for key in keys:
        values[key] = equal_share
    values[keys[0]] += remainder
    return Percentages(**values)


def validate_percentages(percentages: Percentages, enabled: EnabledAccounts | None = None) -> Percentages:
    """Validate a manual allocation update.

    With ``enabled`` supplied only the enabled accounts count toward the 100%
    total and every disabled account must be 0.  Without it all four fields
    must add up to 100.
    """

    for key, value in percentages:
        if value < 0 or value > 100:
            raise ValidationError(
                f"{ACCOUNT_LABELS[key]} percentage must be between 0 and 100.",
                code="INVALID_PERCENTAGES",
            )
    if enabled is None:
        total = percentages.total
    else:
        disabled = [key for key in ACCOUNT_KEYS if key not in enabled.keys() and getattr(percentages, key)]
        if disabled:
            names = ", ".join(ACCOUNT_LABELS[key] for key in disabled)
            raise ValidationError(
                f"Disabled accounts must be set to 0% ({names}).",
                code="INVALID_PERCENTAGES",
            )
        total = sum(getattr(percentages, key) for key in enabled.keys())
    if total != 100:
        raise ValidationError(f"Percentages must sum to 100 (got {total}).", code="INVALID_PERCENTAGES")
    return percentages


__all__ = [
    "ACCOUNT_KEYS",
    "ACCOUNT_LABELS",
    "EnabledAccounts",
    "Percentages",
    "Split",
    "redistribute",
    "split_by_percentages",
    "validate_percentages",
    "validate_split",
]
