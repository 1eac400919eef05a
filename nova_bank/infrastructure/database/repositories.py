"""Data access layer for ledger collections

Repositories are bound to one SQLAlchemy session. ``LedgerStore`` owns the
session lifecycle and exposes the atomic ``run_transaction`` primitive: the
callback receives a ``Ledger`` unit of work, everything it writes commits
together or not at all.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from nova_bank.config import settings
from nova_bank.domain.models import (
    Card,
    CardNetwork,
    Loan,
    LoanStatus,
    Passkey,
    Transaction,
    User,
)
from nova_bank.infrastructure.database.models import (
    CardRecord,
    InsightRecord,
    LoanRecord,
    PasskeyRecord,
    TransactionRecord,
    UserRecord,
)
from nova_bank.infrastructure.observability.metrics import store_retry_counter
from nova_bank.utils.date_utils import ensure_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fields a transfer recipient can be looked up by
LOOKUP_FIELDS = {
    "savings_account_number": UserRecord.savings_account_number,
    "email": UserRecord.email,
    "phone": UserRecord.phone,
    "name": UserRecord.name,
    "username": UserRecord.username,
}


def transaction_from_record(record: TransactionRecord) -> Transaction:
    return Transaction(
        id=record.id,
        uid=record.uid,
        type=record.type,
        amount_cents=record.amount_cents,
        description=record.description,
        timestamp=ensure_utc(record.timestamp),
        party_name=record.party_name,
        category=record.category,
        card_id=record.card_id,
    )


def card_from_record(record: CardRecord, with_transactions: bool = True) -> Card:
    return Card(
        card_number=record.card_number,
        expiry_date=record.expiry_date,
        cvv=record.cvv,
        card_type=CardNetwork(record.card_type),
        credit_limit_cents=record.credit_limit_cents,
        credit_balance_cents=record.credit_balance_cents,
        apr=record.apr,
        statement_balance_cents=record.statement_balance_cents,
        minimum_payment_cents=record.minimum_payment_cents,
        payment_due_date=ensure_utc(record.payment_due_date),
        transactions=[transaction_from_record(t) for t in record.transactions] if with_transactions else [],
    )


def loan_from_record(record: LoanRecord) -> Loan:
    return Loan(
        id=record.id,
        uid=record.user_id,
        loan_amount_cents=record.loan_amount_cents,
        interest_rate=record.interest_rate,
        term_months=record.term_months,
        monthly_payment_cents=record.monthly_payment_cents,
        remaining_balance_cents=record.remaining_balance_cents,
        status=LoanStatus(record.status),
        start_date=ensure_utc(record.start_date),
        payment_due_date=ensure_utc(record.payment_due_date),
    )


def passkey_from_record(record: PasskeyRecord) -> Passkey:
    return Passkey(id=record.id, created=ensure_utc(record.created))


def user_from_record(record: UserRecord, with_accounts: bool = True) -> User:
    return User(
        uid=record.uid,
        name=record.name,
        username=record.username,
        balance_cents=record.balance_cents,
        savings_account_number=record.savings_account_number,
        avatar_url=record.avatar_url,
        email=record.email,
        phone=record.phone,
        kyc_verified=record.kyc_verified,
        passport_data=record.passport_data,
        cards=[card_from_record(c) for c in record.cards] if with_accounts else [],
        loans=[loan_from_record(l) for l in record.loans] if with_accounts else [],
    )


class UserRepository:
    """Repository for users and their cash balance"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, uid: str, for_update: bool = False) -> Optional[UserRecord]:
        stmt = select(UserRecord).where(UserRecord.uid == uid)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_field(self, field: str, value: str) -> List[UserRecord]:
        """Equality lookup on one field, ordered by uid for stable results"""
        column = LOOKUP_FIELDS[field]
        stmt = select(UserRecord).where(column == value).order_by(UserRecord.uid)
        return list(self.db.execute(stmt).scalars())

    def username_taken(self, username: str) -> bool:
        return bool(self.find_by_field("username", username))

    def create(
        self,
        name: str,
        username: str,
        email: str,
        phone: str,
        balance_cents: int,
        savings_account_number: str,
        avatar_url: str,
    ) -> UserRecord:
        record = UserRecord(
            name=name,
            username=username,
            email=email,
            phone=phone,
            balance_cents=balance_cents,
            savings_account_number=savings_account_number,
            avatar_url=avatar_url,
            kyc_verified=False,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def debit_balance(self, uid: str, amount_cents: int) -> bool:
        """
        Subtract from the cash balance only if it covers the amount.

        The check and the write are one conditional UPDATE, so two
        interleaved debits can never both pass against the same balance.
        Returns False when the balance was insufficient (or the user is gone).
        """
        stmt = (
            update(UserRecord)
            .where(UserRecord.uid == uid, UserRecord.balance_cents >= amount_cents)
            .values(balance_cents=UserRecord.balance_cents - amount_cents)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.expire_all()
        return result.rowcount == 1

    def credit_balance(self, uid: str, amount_cents: int) -> bool:
        stmt = (
            update(UserRecord)
            .where(UserRecord.uid == uid)
            .values(balance_cents=UserRecord.balance_cents + amount_cents)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.expire_all()
        return result.rowcount == 1


class CardRepository:
    """Repository for a user's cards"""

    def __init__(self, db: Session):
        self.db = db

    def list_for_user(self, uid: str) -> List[CardRecord]:
        stmt = select(CardRecord).where(CardRecord.user_id == uid).order_by(CardRecord.issued_at)
        return list(self.db.execute(stmt).scalars())

    def get_by_last4(self, uid: str, last4: str, for_update: bool = False) -> Optional[CardRecord]:
        """First-issued card whose number ends in ``last4``"""
        stmt = select(CardRecord).where(CardRecord.user_id == uid).order_by(CardRecord.issued_at)
        if for_update:
            stmt = stmt.with_for_update()
        records = list(self.db.execute(stmt).scalars())
        return next((r for r in records if r.card_number[-4:] == last4), None)

    def add(self, uid: str, card: Card, issued_at: datetime) -> CardRecord:
        record = CardRecord(
            card_number=card.card_number,
            user_id=uid,
            expiry_date=card.expiry_date,
            cvv=card.cvv,
            card_type=card.card_type.value,
            credit_limit_cents=card.credit_limit_cents,
            credit_balance_cents=card.credit_balance_cents,
            apr=card.apr,
            statement_balance_cents=card.statement_balance_cents,
            minimum_payment_cents=card.minimum_payment_cents,
            payment_due_date=card.payment_due_date,
            issued_at=issued_at,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def apply_payment(self, card_number: str, amount_cents: int) -> None:
        """Reduce credit and statement balances, each floored at zero"""
        stmt = (
            update(CardRecord)
            .where(CardRecord.card_number == card_number)
            .values(
                credit_balance_cents=case(
                    (CardRecord.credit_balance_cents > amount_cents, CardRecord.credit_balance_cents - amount_cents),
                    else_=0,
                ),
                statement_balance_cents=case(
                    (
                        CardRecord.statement_balance_cents > amount_cents,
                        CardRecord.statement_balance_cents - amount_cents,
                    ),
                    else_=0,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
        self.db.expire_all()

    def set_due_date(self, card_number: str, due: datetime) -> None:
        self.db.execute(
            update(CardRecord)
            .where(CardRecord.card_number == card_number)
            .values(payment_due_date=due)
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()


class LoanRepository:
    """Repository for a user's loans"""

    def __init__(self, db: Session):
        self.db = db

    def list_for_user(self, uid: str) -> List[LoanRecord]:
        stmt = select(LoanRecord).where(LoanRecord.user_id == uid).order_by(LoanRecord.start_date)
        return list(self.db.execute(stmt).scalars())

    def get(self, uid: str, loan_id: str, for_update: bool = False) -> Optional[LoanRecord]:
        stmt = select(LoanRecord).where(LoanRecord.user_id == uid, LoanRecord.id == loan_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, loan: Loan) -> LoanRecord:
        record = LoanRecord(
            id=loan.id,
            user_id=loan.uid,
            loan_amount_cents=loan.loan_amount_cents,
            interest_rate=loan.interest_rate,
            term_months=loan.term_months,
            monthly_payment_cents=loan.monthly_payment_cents,
            remaining_balance_cents=loan.remaining_balance_cents,
            status=loan.status.value,
            start_date=loan.start_date,
            payment_due_date=loan.payment_due_date,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def apply_payment(self, loan_id: str, amount_cents: int) -> None:
        """
        Reduce the remaining balance (floored at zero) and flip the status
        to Paid Off in the same statement when the payment covers it.
        """
        remaining = LoanRecord.remaining_balance_cents
        stmt = (
            update(LoanRecord)
            .where(LoanRecord.id == loan_id)
            .values(
                remaining_balance_cents=case((remaining > amount_cents, remaining - amount_cents), else_=0),
                status=case((remaining <= amount_cents, LoanStatus.PAID_OFF.value), else_=LoanRecord.status),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
        self.db.expire_all()

    def set_due_date(self, loan_id: str, due: datetime) -> None:
        self.db.execute(
            update(LoanRecord)
            .where(LoanRecord.id == loan_id)
            .values(payment_due_date=due)
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()


class TransactionRepository:
    """Append-only transaction log"""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        uid: str,
        type: str,
        amount_cents: int,
        description: str,
        timestamp: datetime,
        party_name: str,
        category: str,
        card_id: Optional[str] = None,
    ) -> TransactionRecord:
        record = TransactionRecord(
            uid=uid,
            type=type,
            amount_cents=amount_cents,
            description=description,
            timestamp=timestamp,
            party_name=party_name,
            category=category,
            card_id=card_id,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def list_for_user(self, uid: str, limit: int = 50) -> List[TransactionRecord]:
        """Savings-account history (no card linkage), newest first"""
        stmt = (
            select(TransactionRecord)
            .where(TransactionRecord.uid == uid, TransactionRecord.card_id.is_(None))
            .order_by(TransactionRecord.timestamp.desc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars())

    def list_all_for_user(self, uid: str, since: Optional[datetime] = None) -> List[TransactionRecord]:
        """Savings and card history combined, newest first"""
        stmt = select(TransactionRecord).where(TransactionRecord.uid == uid)
        if since is not None:
            stmt = stmt.where(TransactionRecord.timestamp >= since)
        stmt = stmt.order_by(TransactionRecord.timestamp.desc())
        return list(self.db.execute(stmt).scalars())


class PasskeyRepository:
    """Repository for registered credentials"""

    def __init__(self, db: Session):
        self.db = db

    def list_for_user(self, uid: str) -> List[PasskeyRecord]:
        stmt = select(PasskeyRecord).where(PasskeyRecord.user_id == uid).order_by(PasskeyRecord.created)
        return list(self.db.execute(stmt).scalars())

    def add(self, uid: str, passkey: Passkey) -> PasskeyRecord:
        record = PasskeyRecord(user_id=uid, id=passkey.id, created=passkey.created)
        self.db.merge(record)
        self.db.flush()
        return record

    def delete(self, uid: str, passkey_id: str) -> bool:
        result = self.db.execute(
            delete(PasskeyRecord).where(PasskeyRecord.user_id == uid, PasskeyRecord.id == passkey_id)
        )
        return result.rowcount > 0


class InsightsRepository:
    """Cached insights documents"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, uid: str, key: str = "latest") -> Optional[InsightRecord]:
        return self.db.get(InsightRecord, (uid, key))

    def put(self, uid: str, data: dict, last_updated: datetime, key: str = "latest") -> InsightRecord:
        record = self.db.merge(InsightRecord(user_id=uid, key=key, data=data, last_updated=last_updated))
        self.db.flush()
        return record

    def delete_all(self, uid: str) -> int:
        result = self.db.execute(delete(InsightRecord).where(InsightRecord.user_id == uid))
        return result.rowcount


@dataclass
class Ledger:
    """Unit of work handed to ``LedgerStore.run_transaction`` callbacks"""

    session: Session
    users: UserRepository
    cards: CardRepository
    loans: LoanRepository
    transactions: TransactionRepository
    passkeys: PasskeyRepository
    insights: InsightsRepository

    @classmethod
    def bind(cls, session: Session) -> "Ledger":
        return cls(
            session=session,
            users=UserRepository(session),
            cards=CardRepository(session),
            loans=LoanRepository(session),
            transactions=TransactionRepository(session),
            passkeys=PasskeyRepository(session),
            insights=InsightsRepository(session),
        )


class LedgerStore:
    """Transactional document store over SQLAlchemy"""

    def __init__(
        self,
        session_factory: sessionmaker,
        max_retries: int | None = None,
        backoff_base: float | None = None,
    ):
        self.session_factory = session_factory
        self.max_retries = max_retries if max_retries is not None else settings.store_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.store_backoff_base

    def run_transaction(self, callback: Callable[[Ledger], T]) -> T:
        """
        Run ``callback`` atomically and return its result.

        Retry strategy:
        - Retries the whole callback on OperationalError (lock contention,
          serialization failure), exponential backoff base * 2^(attempt-1)
        - Any other exception (including domain errors) rolls back and propagates
        """
        attempt = 0
        while True:
            session = self.session_factory()
            try:
                result = callback(Ledger.bind(session))
                session.commit()
                return result
            except OperationalError:
                session.rollback()
                attempt += 1
                store_retry_counter.inc()
                if attempt > self.max_retries:
                    raise
                backoff = self.backoff_base * (2 ** (attempt - 1))
                logger.warning("Ledger transaction conflict, retrying", extra={"attempt": attempt})
                time.sleep(backoff)
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def read(self, callback: Callable[[Ledger], T]) -> T:
        """Read-only access; same session handling, nothing to commit"""
        return self.run_transaction(callback)

