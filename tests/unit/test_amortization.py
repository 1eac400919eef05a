"""Unit tests for loan amortization and money conversions"""

import pytest

from nova_bank.domain.amortization import minimum_card_payment_cents, monthly_payment_cents
from nova_bank.domain.exceptions import InvalidAmountError
from nova_bank.utils.money import format_currency, to_cents
from nova_bank.utils.serialization import to_jsonable


def test_monthly_payment_standard_annuity():
    """Test $10,000 at 6% over 36 months"""
    assert monthly_payment_cents(1_000_000, 6.0, 36) == 30_422


def test_monthly_payment_zero_rate_splits_evenly():
    """Test zero interest degenerates to principal / term"""
    assert monthly_payment_cents(120_000, 0.0, 12) == 10_000


def test_monthly_payment_invalid_inputs():
    """Test non-positive principal or term yields no payment"""
    assert monthly_payment_cents(0, 6.0, 36) == 0
    assert monthly_payment_cents(1_000_000, 6.0, 0) == 0


def test_monthly_payment_covers_principal():
    """Test payments over the full term repay at least the principal"""
    payment = monthly_payment_cents(500_000, 9.5, 24)
    assert payment * 24 > 500_000


def test_minimum_card_payment_floor():
    """Test 2% of statement with a $25 floor"""
    assert minimum_card_payment_cents(40_000) == 2_500  # 2% = $8, floored to $25
    assert minimum_card_payment_cents(500_000) == 10_000  # 2% = $100


def test_minimum_card_payment_never_exceeds_statement():
    """Test small statements are due in full"""
    assert minimum_card_payment_cents(1_000) == 1_000
    assert minimum_card_payment_cents(0) == 0


def test_to_cents_rounds_half_up():
    """Test dollar floats convert without binary rounding drift"""
    assert to_cents(10.005) == 1001
    assert to_cents(0.1 + 0.2) == 30
    assert to_cents(50) == 5000
    assert to_cents("19.99") == 1999


@pytest.mark.parametrize("amount", [float("nan"), float("inf"), float("-inf"), "abc", 1e20])
def test_to_cents_rejects_unusable_amounts(amount):
    """Test non-finite, non-numeric, and oversized amounts are business errors"""
    with pytest.raises(InvalidAmountError):
        to_cents(amount)


def test_format_currency():
    """Test dollar formatting with thousands separators"""
    assert format_currency(123456) == "$1,234.56"
    assert format_currency(5) == "$0.05"
    assert format_currency(-500) == "-$5.00"


def test_to_jsonable_adds_dollar_siblings():
    """Test _cents keys gain a dollar sibling for the chat service"""
    payload = to_jsonable({"amount_cents": 2500, "nested": [{"balance_cents": 100}]})

    assert payload["amount_cents"] == 2500
    assert payload["amount"] == 25.0
    assert payload["nested"][0]["balance"] == 1.0
