"""Registration, account snapshot, history, and passkey endpoints"""

from fastapi import APIRouter, Depends, Query

from nova_bank.api.dependencies import get_banking_session, get_store
from nova_bank.api.errors import ensure_success
from nova_bank.api.v1.schemas import (
    OperationResponse,
    PasskeyItem,
    PasskeyListResponse,
    PasskeyRequest,
    RegisterRequest,
)
from nova_bank.infrastructure.database.repositories import LedgerStore
from nova_bank.services.registration import register_user
from nova_bank.services.sessions import BankingSession
from nova_bank.utils.serialization import to_jsonable

router = APIRouter()


@router.post("/users", status_code=201)
def create_user(request_body: RegisterRequest, store: LedgerStore = Depends(get_store)):
    """
    Register a customer.

    New users start with the configured cash balance, a generated 16-digit
    savings account number, and one Visa card.
    """
    user = register_user(
        store,
        name=request_body.name,
        username=request_body.username,
        email=request_body.email,
        phone=request_body.phone,
    )
    return {"user": to_jsonable(user)}


@router.get("/accounts/me")
def get_my_accounts(session: BankingSession = Depends(get_banking_session)):
    """Fresh snapshot from the store: user, cards, loans, recent savings history, passkeys"""
    return to_jsonable(session.operations.refresh())


@router.get("/transactions")
def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    session: BankingSession = Depends(get_banking_session),
):
    """Savings account history, newest first"""
    return {"transactions": to_jsonable(session.operations.savings_transactions(limit))}


@router.get("/passkeys", response_model=PasskeyListResponse)
def list_passkeys(session: BankingSession = Depends(get_banking_session)):
    return PasskeyListResponse(
        passkeys=[PasskeyItem(id=p.id, created=p.created.isoformat()) for p in session.operations.passkeys()]
    )


@router.post("/passkeys", response_model=OperationResponse, status_code=201)
def add_passkey(request_body: PasskeyRequest, session: BankingSession = Depends(get_banking_session)):
    result = ensure_success(session.operations.register_passkey(request_body.credential_id))
    return OperationResponse(success=True, message=result.message, data=to_jsonable(result.data))


@router.delete("/passkeys/{passkey_id}", response_model=OperationResponse)
def delete_passkey(passkey_id: str, session: BankingSession = Depends(get_banking_session)):
    result = ensure_success(session.operations.remove_passkey(passkey_id))
    return OperationResponse(success=True, message=result.message)
