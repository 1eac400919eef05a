"""Pytest fixtures for testing"""

import pytest
from datetime import datetime, timedelta
from typing import Optional
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from nova_bank.api.dependencies import get_session_registry, get_store
from nova_bank.api.main import create_app
from nova_bank.assistant.analysis import SpendingAnalyzer
from nova_bank.domain.models import Card, CardNetwork, Loan, LoanStatus, Passkey
from nova_bank.domain.underwriting import Underwriting
from nova_bank.infrastructure.database.models import Base
from nova_bank.infrastructure.database.repositories import LedgerStore
from nova_bank.services.insights import InsightsCache
from nova_bank.services.operations import AccountOperationsService
from nova_bank.services.sessions import SessionRegistry
from tests.fakes import FIXED_NOW, FakeAuthenticator, FakeChatClient, fixed_clock, insights_payload


# Test database
@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so several connections (and threads) share one database"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(engine) -> LedgerStore:
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    return LedgerStore(session_factory, max_retries=5, backoff_base=0.01)


class Seeder:
    """Writes fixture rows straight through the repositories"""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.counter = 0

    def user(
        self,
        name: str,
        balance_cents: int = 100_000,
        username: Optional[str] = None,
        account_number: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> str:
        self.counter += 1
        username = username or name.lower().replace(" ", "")
        account_number = account_number or f"{self.counter:016d}"
        email = email or f"{username}@example.com"
        phone = phone or f"+1555000{self.counter:04d}"

        def _create(ledger):
            return ledger.users.create(
                name=name,
                username=username,
                email=email,
                phone=phone,
                balance_cents=balance_cents,
                savings_account_number=account_number,
                avatar_url=f"https://picsum.photos/seed/{username}/100",
            ).uid

        return self.store.run_transaction(_create)

    def card(
        self,
        uid: str,
        card_number: str = "4111111111111234",
        credit_balance_cents: int = 50_000,
        statement_balance_cents: int = 40_000,
        minimum_payment_cents: int = 2_500,
        payment_due_date: datetime = FIXED_NOW + timedelta(days=5),
        card_type: CardNetwork = CardNetwork.VISA,
    ) -> str:
        card = Card(
            card_number=card_number,
            expiry_date="08/29",
            cvv="123",
            card_type=card_type,
            credit_limit_cents=500_000,
            credit_balance_cents=credit_balance_cents,
            apr=19.99,
            statement_balance_cents=statement_balance_cents,
            minimum_payment_cents=minimum_payment_cents,
            payment_due_date=payment_due_date,
        )
        self.counter += 1
        issued_at = FIXED_NOW - timedelta(days=365) + timedelta(minutes=self.counter)
        self.store.run_transaction(lambda ledger: ledger.cards.add(uid, card, issued_at))
        return card_number[-4:]

    def loan(
        self,
        uid: str,
        loan_id: str = "loan-abc123",
        loan_amount_cents: int = 1_000_000,
        remaining_balance_cents: int = 800_000,
        monthly_payment_cents: int = 30_422,
        payment_due_date: datetime = FIXED_NOW + timedelta(days=20),
        status: LoanStatus = LoanStatus.ACTIVE,
    ) -> str:
        loan = Loan(
            id=loan_id,
            uid=uid,
            loan_amount_cents=loan_amount_cents,
            interest_rate=6.0,
            term_months=36,
            monthly_payment_cents=monthly_payment_cents,
            remaining_balance_cents=remaining_balance_cents,
            status=status,
            start_date=FIXED_NOW - timedelta(days=90),
            payment_due_date=payment_due_date,
        )
        self.store.run_transaction(lambda ledger: ledger.loans.add(loan))
        return loan_id

    def transaction(
        self,
        uid: str,
        amount_cents: int,
        type: str = "debit",
        description: str = "Coffee Shop",
        days_ago: int = 1,
        category: str = "Dining",
        card_id: Optional[str] = None,
    ) -> None:
        self.store.run_transaction(
            lambda ledger: ledger.transactions.append(
                uid=uid,
                type=type,
                amount_cents=amount_cents,
                description=description,
                timestamp=FIXED_NOW - timedelta(days=days_ago),
                party_name=description,
                category=category,
                card_id=card_id,
            )
        )

    def passkey(self, uid: str, passkey_id: str = "cred-1") -> None:
        self.store.run_transaction(lambda ledger: ledger.passkeys.add(uid, Passkey(id=passkey_id, created=FIXED_NOW)))


@pytest.fixture
def seed(store) -> Seeder:
    return Seeder(store)


@pytest.fixture
def make_operations(store):
    """Factory for an operations service bound to one user"""

    def _make(user_id, approve: bool = True) -> AccountOperationsService:
        return AccountOperationsService(
            store, user_id, Underwriting.deterministic(approve=approve), clock=fixed_clock
        )

    return _make


@pytest.fixture
def fake_chat() -> FakeChatClient:
    return FakeChatClient(structured={"spending_insights": insights_payload()})


@pytest.fixture
def fake_authenticator() -> FakeAuthenticator:
    return FakeAuthenticator(True)


@pytest.fixture
def registry(store, fake_chat, fake_authenticator) -> SessionRegistry:
    return SessionRegistry(
        store, Underwriting.deterministic(approve=True), fake_chat, fake_authenticator, clock=fixed_clock
    )


@pytest.fixture
def client(store, registry) -> TestClient:
    """Create FastAPI test client with test database and fake collaborators"""
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_session_registry] = lambda: registry
    return TestClient(app)


@pytest.fixture
def insights_for(store, fake_chat):
    def _make(user_id, min_debits: int = 3) -> InsightsCache:
        return InsightsCache(
            store,
            SpendingAnalyzer(fake_chat, clock=fixed_clock),
            user_id,
            lookback_days=60,
            min_debits=min_debits,
            clock=fixed_clock,
        )

    return _make
