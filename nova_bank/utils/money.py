"""Conversions between the model's dollar amounts and stored cents"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from nova_bank.domain.exceptions import InvalidAmountError

# Largest single amount accepted anywhere; sums of a few of these still fit a BIGINT
MAX_AMOUNT_CENTS = 1_000_000_000_000_000
MAX_AMOUNT_DOLLARS = MAX_AMOUNT_CENTS // 100


def to_cents(amount: float | int | str) -> int:
    """
    Convert a dollar amount to integer cents, rounding half up.

    Raises:
        InvalidAmountError: The amount is not a finite number or exceeds MAX_AMOUNT_DOLLARS
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise InvalidAmountError(f"Error: {amount!r} is not a valid amount.") from e
    if not value.is_finite():
        raise InvalidAmountError(f"Error: {amount!r} is not a valid amount.")
    if abs(value) > MAX_AMOUNT_DOLLARS:
        raise InvalidAmountError("Error: Amount is too large.")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_dollars(cents: int) -> float:
    return cents / 100


def format_currency(cents: int) -> str:
    """Format cents as US dollars, e.g. 123456 -> '$1,234.56'"""
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"
