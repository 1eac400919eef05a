"""Issuance of new accounts: savings numbers, cards, and loans"""

import random
import uuid
from datetime import datetime

from nova_bank.domain.amortization import monthly_payment_cents
from nova_bank.domain.models import Card, CardNetwork, Loan, LoanStatus
from nova_bank.domain.underwriting import determine_credit_limit
from nova_bank.utils.date_utils import day_of_next_month

# Leading digit of the card number for each network
NETWORK_PREFIXES = {
    CardNetwork.VISA: "4",
    CardNetwork.MASTERCARD: "5",
}

# Longest loan term offered
MAX_LOAN_TERM_MONTHS = 480


def _digits(rng: random.Random, length: int) -> str:
    return "".join(str(rng.randint(0, 9)) for _ in range(length))


def generate_account_number(rng: random.Random) -> str:
    """16-digit savings account number"""
    return _digits(rng, 16)


def issue_card(
    network: CardNetwork,
    rng: random.Random,
    now: datetime,
    annual_income_cents: int = 0,
) -> Card:
    """
    Provision a new card with zero balance.

    - 16-digit number starting with the network prefix
    - expiry 2-6 years out, random month
    - credit limit tiered on stated income
    - APR between 15% and 30%
    - first payment due the 15th of next month
    """
    card_number = NETWORK_PREFIXES[network] + _digits(rng, 15)
    expiry_month = rng.randint(1, 12)
    expiry_year = (now.year + rng.randint(2, 6)) % 100

    return Card(
        card_number=card_number,
        expiry_date=f"{expiry_month:02d}/{expiry_year:02d}",
        cvv=str(rng.randint(100, 999)),
        card_type=network,
        credit_limit_cents=determine_credit_limit(annual_income_cents),
        credit_balance_cents=0,
        apr=round(rng.random() * 15 + 15, 2),
        statement_balance_cents=0,
        minimum_payment_cents=0,
        payment_due_date=day_of_next_month(now, 15),
    )


def originate_loan(
    uid: str,
    principal_cents: int,
    term_months: int,
    interest_rate: float,
    now: datetime,
) -> Loan:
    """New active loan with the full principal outstanding, first payment due the 1st of next month"""
    return Loan(
        id=f"loan-{uuid.uuid4().hex[:12]}",
        uid=uid,
        loan_amount_cents=principal_cents,
        interest_rate=interest_rate,
        term_months=term_months,
        monthly_payment_cents=monthly_payment_cents(principal_cents, interest_rate, term_months),
        remaining_balance_cents=principal_cents,
        status=LoanStatus.ACTIVE,
        start_date=now,
        payment_due_date=day_of_next_month(now, 1),
    )
