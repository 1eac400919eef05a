"""Simulated underwriting - instant decisions for cards, loans, and extensions

The random policies stand in for a real decision engine. They are injected
into the account operations service so tests (and a future real engine) can
force either branch deterministically.
"""

import random
from dataclasses import dataclass, field
from typing import Callable, Optional

from nova_bank.config import settings

# Returns True when the request is approved
ApprovalPolicy = Callable[[], bool]


class RandomApproval:
    """Approve unless a uniform draw falls under the rejection rate"""

    def __init__(self, rejection_rate: float, rng: Optional[random.Random] = None):
        self.rejection_rate = rejection_rate
        self.rng = rng or random.Random()

    def __call__(self) -> bool:
        return self.rng.random() >= self.rejection_rate


def always_approve() -> bool:
    return True


def always_reject() -> bool:
    return False


def determine_credit_limit(annual_income_cents: int) -> int:
    """
    Map stated annual income to a credit limit tier.

    Income bands:
    - under $30k:   $5,000
    - $30k - $60k:  $10,000
    - $60k - $100k: $15,000
    - $100k+:       $20,000
    """
    if annual_income_cents < 3_000_000:
        return 500_000
    elif annual_income_cents < 6_000_000:
        return 1_000_000
    elif annual_income_cents < 10_000_000:
        return 1_500_000
    else:
        return 2_000_000


@dataclass
class Underwriting:
    """Bundle of the decision hooks used by account operations"""

    card: ApprovalPolicy
    loan: ApprovalPolicy
    extension: ApprovalPolicy
    rng: random.Random = field(default_factory=random.Random)
    loan_rate_min_percent: float = 3.0
    loan_rate_max_percent: float = 13.0

    def loan_interest_rate(self) -> float:
        """Annual rate offered on an approved loan, two decimals"""
        spread = self.loan_rate_max_percent - self.loan_rate_min_percent
        return round(self.rng.random() * spread + self.loan_rate_min_percent, 2)

    @classmethod
    def from_settings(cls, seed: Optional[int] = None) -> "Underwriting":
        rng = random.Random(seed)
        return cls(
            card=RandomApproval(settings.card_rejection_rate, rng),
            loan=RandomApproval(settings.loan_rejection_rate, rng),
            extension=RandomApproval(settings.extension_rejection_rate, rng),
            rng=rng,
            loan_rate_min_percent=settings.loan_rate_min_percent,
            loan_rate_max_percent=settings.loan_rate_max_percent,
        )

    @classmethod
    def deterministic(cls, approve: bool = True, seed: int = 0) -> "Underwriting":
        policy = always_approve if approve else always_reject
        return cls(card=policy, loan=policy, extension=policy, rng=random.Random(seed))
