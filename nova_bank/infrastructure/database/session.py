"""Database session management with connection pooling"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from nova_bank.config import settings
from nova_bank.infrastructure.database.repositories import LedgerStore

# Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=10,
    max_overflow=10,
    pool_recycle=3600,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

ledger_store = LedgerStore(SessionLocal)


def get_ledger_store() -> LedgerStore:
    """Dependency injection for the ledger store"""
    return ledger_store
