"""Decimal helpers shared by the calculator, ledger and aggregates."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    """Coerce an int/float/str/Decimal without quantizing (quantities, rates).

    Floats go through ``str`` first so 0.1 becomes 0.1 rather than
    0.1000000000000000055511151231257827.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        number = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"Not a number: {value!r}") from exc
    if not number.is_finite():
        raise ValueError(f"Not a number: {value!r}")
    return number


def to_money(value) -> Decimal:
    """Coerce to a cent-quantized Decimal (ROUND_HALF_UP)."""
    if value is None:
        return ZERO
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def clamp_non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO
