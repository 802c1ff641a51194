import pytest

from money import MAX_AMOUNT_CENTS, parse_amount


@pytest.mark.parametrize(
    "raw, cents",
    [
        ("12", 1_200),
        ("12.5", 1_250),
        ("12,90", 1_290),
        ("CHF 1'234.50", 123_450),
        ("€ 7.05", 705),
        ("1.234,56", 123_456),
        ("0.005", 1),
    ],
)
def test_parse_amount_accepts_common_formats(raw: str, cents: int) -> None:
    assert parse_amount(raw) == cents


@pytest.mark.parametrize("raw", ["", "abc", "NaN", "12..a"])
def test_parse_amount_rejects_garbage(raw: str) -> None:
    with pytest.raises(ValueError, match="Invalid amount"):
        parse_amount(raw)


def test_parse_amount_rejects_non_positive() -> None:
    with pytest.raises(ValueError, match="Amount must be positive"):
        parse_amount("0")
    with pytest.raises(ValueError, match="Amount must be positive"):
        parse_amount("-3.50")
    assert parse_amount("0", allow_zero=True) == 0


@pytest.mark.parametrize("raw", ["1e30", "-1e30", "10000000000000.01", "1E+999999"])
def test_parse_amount_rejects_huge_values(raw: str) -> None:
    with pytest.raises(ValueError, match="Amount is too large"):
        parse_amount(raw)


def test_parse_amount_accepts_the_ceiling() -> None:
    assert parse_amount("10000000000000") == MAX_AMOUNT_CENTS
