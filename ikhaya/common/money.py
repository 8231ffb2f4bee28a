"""Conversions between integer cents and PayFast decimal amount strings."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation


def to_cents(amount: Decimal | str | int | float) -> int:
    """Convert a currency amount to integer cents, rounding half up."""

    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {amount!r}") from exc
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(cents: int) -> str:
    """Render cents the way PayFast expects amounts (two decimals, no grouping)."""

    return f"{Decimal(cents) / 100:.2f}"
