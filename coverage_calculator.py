"""Two-tier insurance coverage calculation.

Basic insurance is applied to the full expense amount first. Supplementary
insurance only sees what basic insurance left uncovered, so the two tiers
never cover the same cent twice. Amounts are integer cents; intermediate
values are exact ``Decimal`` and each output is rounded half-up on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol


class InvalidAmount(ValueError):
    pass


class CoverageLimits(Protocol):
    percentage: Optional[Decimal]
    max_amount_cents: Optional[int]


@dataclass(frozen=True)
class RuleLimits:
    percentage: Optional[Decimal] = None
    max_amount_cents: Optional[int] = None


@dataclass(frozen=True)
class CoverageSplit:
    basic_coverage_cents: int
    supplementary_coverage_cents: int
    user_pays_cents: int

    def as_dict(self) -> dict[str, int]:
        return {
            "basic_coverage_cents": self.basic_coverage_cents,
            "supplementary_coverage_cents": self.supplementary_coverage_cents,
            "user_pays_cents": self.user_pays_cents,
        }


_HUNDRED = Decimal(100)


def _to_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _tier_coverage(
    base: Decimal, rule: CoverageLimits, *, unlimited_when_unset: bool
) -> Decimal:
    if rule.percentage is not None:
        raw = base * Decimal(str(rule.percentage)) / _HUNDRED
        if rule.max_amount_cents is not None:
            return min(raw, Decimal(rule.max_amount_cents))
        return raw
    if rule.max_amount_cents is not None:
        return min(base, Decimal(rule.max_amount_cents))
    return base if unlimited_when_unset else Decimal(0)


def calculate_coverage(
    amount_cents: int,
    basic_rule: Optional[CoverageLimits],
    supplementary_rule: Optional[CoverageLimits],
) -> CoverageSplit:
    if amount_cents is None or amount_cents <= 0:
        raise InvalidAmount("Expense amount must be positive")

    amount = Decimal(amount_cents)
    remaining = amount
    basic = Decimal(0)
    supplementary = Decimal(0)

    if basic_rule is not None:
        basic = _tier_coverage(amount, basic_rule, unlimited_when_unset=False)
        remaining -= basic

    # A supplementary rule without limits covers the whole remainder.
    if supplementary_rule is not None and remaining > 0:
        supplementary = _tier_coverage(
            remaining, supplementary_rule, unlimited_when_unset=True
        )
        remaining -= supplementary

    user_pays = max(Decimal(0), remaining)

    return CoverageSplit(
        basic_coverage_cents=_to_cents(basic),
        supplementary_coverage_cents=_to_cents(supplementary),
        user_pays_cents=_to_cents(user_pays),
    )
