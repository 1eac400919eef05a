"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class LoanStatus(str, Enum):
    ACTIVE = "Active"
    PAID_OFF = "Paid Off"


class AccountType(str, Enum):
    CARD = "card"
    LOAN = "loan"


class PaymentType(str, Enum):
    MINIMUM = "minimum"
    STATEMENT = "statement"  # Cards only
    FULL = "full"
    CUSTOM = "custom"


class CardNetwork(str, Enum):
    VISA = "Visa"
    MASTERCARD = "Mastercard"


@dataclass
class Transaction:
    """Immutable ledger entry"""

    id: str
    uid: str
    type: str  # "credit" or "debit"
    amount_cents: int
    description: str
    timestamp: datetime
    party_name: str
    category: str
    card_id: Optional[str] = None


@dataclass
class Card:
    """Credit card issued to a user, keyed by its full number"""

    card_number: str
    expiry_date: str  # MM/YY
    cvv: str
    card_type: CardNetwork
    credit_limit_cents: int
    credit_balance_cents: int
    apr: float
    statement_balance_cents: int
    minimum_payment_cents: int
    payment_due_date: datetime
    transactions: List[Transaction] = field(default_factory=list)

    @property
    def last4(self) -> str:
        return self.card_number[-4:]

    @property
    def masked_number(self) -> str:
        return f"•••• {self.last4}"


@dataclass
class Loan:
    """Amortized installment loan"""

    id: str
    uid: str
    loan_amount_cents: int
    interest_rate: float  # Annual percentage
    term_months: int
    monthly_payment_cents: int
    remaining_balance_cents: int
    status: LoanStatus
    start_date: datetime
    payment_due_date: datetime


@dataclass
class User:
    """Bank customer with a cash (savings) balance"""

    uid: str
    name: str
    username: str
    balance_cents: int
    savings_account_number: str
    avatar_url: str
    email: str
    phone: str
    kyc_verified: bool = False
    passport_data: Optional[Dict[str, Any]] = None
    cards: List[Card] = field(default_factory=list)
    loans: List[Loan] = field(default_factory=list)


@dataclass
class Passkey:
    """Registered strong-authentication credential"""

    id: str  # base64url credential id
    created: datetime


@dataclass
class SpendingBreakdownItem:
    name: str
    value: float


@dataclass
class CategoryChange:
    category: str
    change_percent: float


@dataclass
class SavingOpportunity:
    suggestion: str
    potential_savings: float


@dataclass
class Subscription:
    name: str
    amount: float


@dataclass
class InsightsData:
    """Spending analysis for one language"""

    spending_breakdown: List[SpendingBreakdownItem]
    overall_spending_change: float
    top_category_changes: List[CategoryChange]
    cash_flow_forecast: str
    saving_opportunities: List[SavingOpportunity]
    subscriptions: List[Subscription]

    @property
    def total_spending(self) -> float:
        return sum(item.value for item in self.spending_breakdown)


@dataclass
class CachedInsight:
    """Per-user insights blob keyed by language code"""

    data: Dict[str, InsightsData]
    last_updated: datetime


@dataclass
class CardApplicationDetails:
    full_name: str
    address: str
    date_of_birth: str
    employment_status: str
    employer: str
    annual_income_cents: int
    card_type: CardNetwork


@dataclass
class LoanApplicationDetails:
    full_name: str
    address: str
    date_of_birth: str
    employment_status: str
    annual_income_cents: int
    loan_amount_cents: int
    loan_term_months: int
    employer: str = "N/A"


@dataclass
class AccountSnapshot:
    """Everything the client shows after a refresh from the store"""

    user: User
    transactions: List[Transaction]
    passkeys: List[Passkey]


@dataclass
class OperationResult:
    """Uniform outcome of an account operation or tool call"""

    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, message: str, **data: Any) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, message: str, error_code: str) -> "OperationResult":
        return cls(success=False, message=message, error_code=error_code)
