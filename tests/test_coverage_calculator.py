from decimal import Decimal

import pytest

from coverage_calculator import (
    CoverageSplit,
    InvalidAmount,
    RuleLimits,
    calculate_coverage,
)


def test_basic_percentage_without_cap() -> None:
    split = calculate_coverage(10_000, RuleLimits(percentage=Decimal("50")), None)
    assert split == CoverageSplit(
        basic_coverage_cents=5_000,
        supplementary_coverage_cents=0,
        user_pays_cents=5_000,
    )


def test_basic_percentage_is_capped_and_supplementary_sees_the_rest() -> None:
    split = calculate_coverage(
        10_000,
        RuleLimits(percentage=Decimal("50"), max_amount_cents=3_000),
        RuleLimits(),
    )
    assert split.basic_coverage_cents == 3_000
    # Unconfigured supplementary rule covers the full 70.00 remainder.
    assert split.supplementary_coverage_cents == 7_000
    assert split.user_pays_cents == 0


def test_unconfigured_supplementary_rule_covers_everything() -> None:
    split = calculate_coverage(8_000, None, RuleLimits())
    assert split.basic_coverage_cents == 0
    assert split.supplementary_coverage_cents == 8_000
    assert split.user_pays_cents == 0


def test_no_rules_means_user_pays_everything() -> None:
    split = calculate_coverage(4_550, None, None)
    assert split.as_dict() == {
        "basic_coverage_cents": 0,
        "supplementary_coverage_cents": 0,
        "user_pays_cents": 4_550,
    }


def test_unconfigured_basic_rule_covers_nothing() -> None:
    split = calculate_coverage(2_000, RuleLimits(), None)
    assert split.basic_coverage_cents == 0
    assert split.user_pays_cents == 2_000


def test_basic_max_amount_only() -> None:
    split = calculate_coverage(2_500, RuleLimits(max_amount_cents=1_000), None)
    assert split.basic_coverage_cents == 1_000
    assert split.user_pays_cents == 1_500

    small = calculate_coverage(600, RuleLimits(max_amount_cents=1_000), None)
    assert small.basic_coverage_cents == 600
    assert small.user_pays_cents == 0


def test_supplementary_applies_to_remainder_not_original_amount() -> None:
    split = calculate_coverage(
        10_000,
        RuleLimits(percentage=Decimal("80")),
        RuleLimits(percentage=Decimal("50")),
    )
    assert split.basic_coverage_cents == 8_000
    assert split.supplementary_coverage_cents == 1_000
    assert split.user_pays_cents == 1_000


def test_supplementary_percentage_is_capped() -> None:
    split = calculate_coverage(
        10_000,
        RuleLimits(percentage=Decimal("50")),
        RuleLimits(percentage=Decimal("50"), max_amount_cents=2_000),
    )
    assert split.basic_coverage_cents == 5_000
    assert split.supplementary_coverage_cents == 2_000
    assert split.user_pays_cents == 3_000


def test_supplementary_max_amount_only() -> None:
    split = calculate_coverage(
        10_000,
        RuleLimits(percentage=Decimal("60")),
        RuleLimits(max_amount_cents=2_500),
    )
    assert split.supplementary_coverage_cents == 2_500
    assert split.user_pays_cents == 1_500


def test_supplementary_skipped_when_basic_covers_everything() -> None:
    split = calculate_coverage(
        5_000, RuleLimits(percentage=Decimal("100")), RuleLimits()
    )
    assert split.basic_coverage_cents == 5_000
    assert split.supplementary_coverage_cents == 0
    assert split.user_pays_cents == 0


def test_rounding_is_half_up_per_output() -> None:
    # 10.05 at 50 % leaves exactly half a cent on both sides.
    split = calculate_coverage(1_005, RuleLimits(percentage=Decimal("50")), None)
    assert split.basic_coverage_cents == 503
    assert split.user_pays_cents == 503

    split = calculate_coverage(3_333, RuleLimits(percentage=Decimal("15")), None)
    assert split.basic_coverage_cents == 500
    assert split.user_pays_cents == 2_833


def test_fractional_percentage() -> None:
    split = calculate_coverage(
        20_000,
        RuleLimits(percentage=Decimal("12.5")),
        RuleLimits(percentage=Decimal("33.33")),
    )
    assert split.basic_coverage_cents == 2_500
    # 175.00 * 33.33 % = 58.3275
    assert split.supplementary_coverage_cents == 5_833
    assert split.user_pays_cents == 11_667


@pytest.mark.parametrize("amount_cents", [0, -1, -10_000])
def test_non_positive_amount_is_rejected(amount_cents: int) -> None:
    with pytest.raises(InvalidAmount):
        calculate_coverage(amount_cents, None, None)


@pytest.mark.parametrize(
    "basic, supplementary",
    [
        (None, None),
        (RuleLimits(percentage=Decimal("33.33")), None),
        (None, RuleLimits(percentage=Decimal("66.67"), max_amount_cents=4_321)),
        (
            RuleLimits(percentage=Decimal("90"), max_amount_cents=12_345),
            RuleLimits(),
        ),
        (
            RuleLimits(max_amount_cents=777),
            RuleLimits(percentage=Decimal("17.5")),
        ),
        (RuleLimits(), RuleLimits(max_amount_cents=1)),
    ],
)
def test_split_always_adds_up_and_stays_non_negative(basic, supplementary) -> None:
    for amount_cents in (1, 2, 3, 99, 101, 1_005, 4_550, 33_333, 1_000_001):
        split = calculate_coverage(amount_cents, basic, supplementary)
        total = (
            split.basic_coverage_cents
            + split.supplementary_coverage_cents
            + split.user_pays_cents
        )
        assert abs(total - amount_cents) <= 1
        assert split.basic_coverage_cents >= 0
        assert split.supplementary_coverage_cents >= 0
        assert split.user_pays_cents >= 0
