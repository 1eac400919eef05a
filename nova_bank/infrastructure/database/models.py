"""SQLAlchemy ORM models for the ledger collections"""

import uuid
from sqlalchemy import Column, String, BigInteger, Boolean, Float, DateTime, Integer, ForeignKey, Text, JSON
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def _new_id() -> str:
    return uuid.uuid4().hex


class UserRecord(Base):
    """Bank customer; balance is mutated only through ledger transactions"""

    __tablename__ = "users"

    uid = Column(String(64), primary_key=True, default=_new_id)
    name = Column(Text, nullable=False, index=True)
    username = Column(Text, nullable=False, unique=True)
    balance_cents = Column(BigInteger, nullable=False, default=0)
    savings_account_number = Column(String(16), nullable=False, unique=True)
    avatar_url = Column(Text, nullable=False, default="")
    email = Column(Text, nullable=False, index=True)
    phone = Column(Text, nullable=False, index=True)
    kyc_verified = Column(Boolean, nullable=False, default=False)
    passport_data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    cards = relationship("CardRecord", back_populates="user", order_by="CardRecord.issued_at")
    loans = relationship("LoanRecord", back_populates="user", order_by="LoanRecord.start_date")
    passkeys = relationship("PasskeyRecord", back_populates="user", cascade="all, delete-orphan")


class CardRecord(Base):
    """Credit card, identified by its full number"""

    __tablename__ = "cards"

    card_number = Column(String(16), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.uid", ondelete="CASCADE"), nullable=False, index=True)
    expiry_date = Column(String(5), nullable=False)
    cvv = Column(String(4), nullable=False)
    card_type = Column(Text, nullable=False)
    credit_limit_cents = Column(BigInteger, nullable=False)
    credit_balance_cents = Column(BigInteger, nullable=False, default=0)
    apr = Column(Float, nullable=False)
    statement_balance_cents = Column(BigInteger, nullable=False, default=0)
    minimum_payment_cents = Column(BigInteger, nullable=False, default=0)
    payment_due_date = Column(DateTime(timezone=True), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)

    user = relationship("UserRecord", back_populates="cards")
    transactions = relationship(
        "TransactionRecord",
        back_populates="card",
        order_by="TransactionRecord.timestamp.desc()",
    )


class LoanRecord(Base):
    """Installment loan; status moves Active -> Paid Off once"""

    __tablename__ = "loans"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.uid", ondelete="CASCADE"), nullable=False, index=True)
    loan_amount_cents = Column(BigInteger, nullable=False)
    interest_rate = Column(Float, nullable=False)
    term_months = Column(Integer, nullable=False)
    monthly_payment_cents = Column(BigInteger, nullable=False)
    remaining_balance_cents = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="Active")
    start_date = Column(DateTime(timezone=True), nullable=False)
    payment_due_date = Column(DateTime(timezone=True), nullable=False)

    user = relationship("UserRecord", back_populates="loans")


class TransactionRecord(Base):
    """Append-only ledger entry"""

    __tablename__ = "transactions"

    id = Column(String(64), primary_key=True, default=_new_id)
    uid = Column(String(64), ForeignKey("users.uid", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    description = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    party_name = Column(Text, nullable=False)
    category = Column(Text, nullable=False)
    card_id = Column(String(16), ForeignKey("cards.card_number"), nullable=True, index=True)

    card = relationship("CardRecord", back_populates="transactions")


class PasskeyRecord(Base):
    """Strong-authentication credential bound to a user"""

    __tablename__ = "passkeys"

    user_id = Column(String(64), ForeignKey("users.uid", ondelete="CASCADE"), primary_key=True)
    id = Column(Text, primary_key=True)
    created = Column(DateTime(timezone=True), nullable=False)

    user = relationship("UserRecord", back_populates="passkeys")


class InsightRecord(Base):
    """Cached AI insights; one row per user under key 'latest'"""

    __tablename__ = "insights"

    user_id = Column(String(64), ForeignKey("users.uid", ondelete="CASCADE"), primary_key=True)
    key = Column(String(32), primary_key=True, default="latest")
    data = Column(JSON, nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=False)
