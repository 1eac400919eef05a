"""Money movement and application endpoints"""

from fastapi import APIRouter, Depends

from nova_bank.api.dependencies import get_banking_session
from nova_bank.api.errors import ensure_success
from nova_bank.api.v1.schemas import (
    CardApplicationRequest,
    ExtensionRequest,
    LoanApplicationRequest,
    OperationResponse,
    PaymentRequest,
    TransferRequest,
)
from nova_bank.domain.models import CardApplicationDetails, LoanApplicationDetails, OperationResult
from nova_bank.services.sessions import BankingSession
from nova_bank.utils.serialization import to_jsonable

router = APIRouter()


def _respond(result: OperationResult) -> OperationResponse:
    ensure_success(result)
    return OperationResponse(success=True, message=result.message, data=to_jsonable(result.data))


@router.post("/transfers", response_model=OperationResponse)
def transfer(request_body: TransferRequest, session: BankingSession = Depends(get_banking_session)):
    return _respond(session.operations.transfer_money(request_body.recipient, request_body.amount_cents))


@router.post("/payments", response_model=OperationResponse)
def pay_account(request_body: PaymentRequest, session: BankingSession = Depends(get_banking_session)):
    """Pay a card (by last 4 digits) or loan (by id) from the cash balance"""
    return _respond(
        session.operations.make_account_payment(
            request_body.account_id,
            request_body.account_type,
            request_body.payment_type,
            request_body.amount_cents,
        )
    )


@router.post("/extensions", response_model=OperationResponse)
def request_extension(request_body: ExtensionRequest, session: BankingSession = Depends(get_banking_session)):
    return _respond(session.operations.request_payment_extension(request_body.account_id, request_body.account_type))


@router.post("/applications/card", response_model=OperationResponse)
def apply_for_card(request_body: CardApplicationRequest, session: BankingSession = Depends(get_banking_session)):
    details = CardApplicationDetails(
        full_name=session.operations.current_user().name,
        address=request_body.address,
        date_of_birth=request_body.date_of_birth,
        employment_status=request_body.employment_status,
        employer=request_body.employer,
        annual_income_cents=request_body.annual_income_cents,
        card_type=request_body.card_type,
    )
    return _respond(session.operations.apply_for_card(details))


@router.post("/applications/loan", response_model=OperationResponse)
def apply_for_loan(request_body: LoanApplicationRequest, session: BankingSession = Depends(get_banking_session)):
    details = LoanApplicationDetails(
        full_name=session.operations.current_user().name,
        address=request_body.address,
        date_of_birth=request_body.date_of_birth,
        employment_status=request_body.employment_status,
        annual_income_cents=request_body.annual_income_cents,
        loan_amount_cents=request_body.loan_amount_cents,
        loan_term_months=request_body.loan_term_months,
        employer=request_body.employer,
    )
    return _respond(session.operations.apply_for_loan(details))
