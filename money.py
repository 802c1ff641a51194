from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

# Fits a signed 64-bit column with room for yearly sums.
MAX_AMOUNT_CENTS = 10**15


def _normalize(value: str) -> str:
    clean = (
        value.strip()
        .replace("€", "")
        .replace("$", "")
        .replace("CHF", "")
        .replace("'", "")
        .replace(" ", "")
    )
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    return clean


def parse_amount(value: str, *, allow_zero: bool = False) -> int:
    """Parse a user-entered amount like ``"1'234.50"`` or ``"CHF 12,90"`` into cents."""
    try:
        amount = Decimal(_normalize(value))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if abs(amount) > Decimal(MAX_AMOUNT_CENTS) / 100:
        raise ValueError("Amount is too large")
    try:
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if cents < 0 or (cents == 0 and not allow_zero):
        raise ValueError("Amount must be positive")
    return cents
