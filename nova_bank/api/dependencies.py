"""Dependency injection for FastAPI endpoints"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, Request

from nova_bank.domain.exceptions import NotAuthenticatedError
from nova_bank.domain.underwriting import Underwriting
from nova_bank.infrastructure.clients.authenticator import PasskeyAuthenticator
from nova_bank.infrastructure.clients.chat import ChatClient
from nova_bank.infrastructure.database.repositories import LedgerStore
from nova_bank.infrastructure.database.session import get_ledger_store
from nova_bank.services.sessions import BankingSession, SessionRegistry


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Signed-in user, as asserted by the authentication proxy in front of the service"""
    if not x_user_id:
        raise NotAuthenticatedError()
    return x_user_id


@lru_cache
def get_underwriting() -> Underwriting:
    return Underwriting.from_settings()


@lru_cache
def get_chat_client() -> ChatClient:
    return ChatClient()


@lru_cache
def get_authenticator() -> PasskeyAuthenticator:
    return PasskeyAuthenticator()


@lru_cache
def _registry() -> SessionRegistry:
    return SessionRegistry(get_ledger_store(), get_underwriting(), get_chat_client(), get_authenticator())


def get_session_registry() -> SessionRegistry:
    """Process-wide registry of banking sessions"""
    return _registry()


def get_store() -> LedgerStore:
    return get_ledger_store()


def get_banking_session(
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
) -> BankingSession:
    return registry.get(user_id)
