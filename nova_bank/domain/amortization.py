"""Loan amortization math"""


def monthly_payment_cents(principal_cents: int, annual_rate_percent: float, term_months: int) -> int:
    """
    Fixed monthly payment for a fully amortizing loan.

    Standard annuity formula:
        M = P * r * (1 + r)^n / ((1 + r)^n - 1)
    where r is the monthly rate (annual percent / 100 / 12) and n the term.
    A zero rate degenerates to an even split of the principal.

    Example:
        $10,000 at 6% over 36 months -> $304.22
    """
    if principal_cents <= 0 or term_months <= 0:
        return 0

    monthly_rate = annual_rate_percent / 100 / 12
    if monthly_rate == 0:
        return round(principal_cents / term_months)

    growth = (1 + monthly_rate) ** term_months
    payment = principal_cents * monthly_rate * growth / (growth - 1)
    return round(payment)


def minimum_card_payment_cents(statement_balance_cents: int) -> int:
    """2% of the statement balance with a $25 floor, never more than what is owed"""
    if statement_balance_cents <= 0:
        return 0
    return min(statement_balance_cents, max(2_500, round(statement_balance_cents * 0.02)))
