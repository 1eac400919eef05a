"""Pydantic schemas for API request/response validation"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from nova_bank.domain.models import AccountType, CardNetwork, PaymentType
from nova_bank.domain.products import MAX_LOAN_TERM_MONTHS
from nova_bank.infrastructure.clients.authenticator import decode_credential_id, encode_credential_id
from nova_bank.utils.money import MAX_AMOUNT_CENTS


class RegisterRequest(BaseModel):
    """Request body for POST /v1/users"""

    name: str = Field(..., min_length=1)
    username: str = Field(..., min_length=3, max_length=32, pattern=r"^[A-Za-z0-9_.]+$")
    email: str = Field(..., min_length=3)
    phone: str = Field(..., min_length=3)


class OperationResponse(BaseModel):
    """Outcome of a successful account operation"""

    success: bool
    message: str
    data: Dict[str, Any] = {}


class TransferRequest(BaseModel):
    """Request body for POST /v1/transfers"""

    recipient: str = Field(..., min_length=1, description="Account number, email, phone, name, or username")
    amount_cents: int = Field(..., le=MAX_AMOUNT_CENTS)


class PaymentRequest(BaseModel):
    """Request body for POST /v1/payments"""

    account_id: str = Field(..., min_length=1, description="Card last 4 digits or loan id")
    account_type: AccountType
    payment_type: PaymentType
    amount_cents: Optional[int] = Field(None, le=MAX_AMOUNT_CENTS, description="Required for custom payments")


class ExtensionRequest(BaseModel):
    """Request body for POST /v1/extensions"""

    account_id: str = Field(..., min_length=1)
    account_type: AccountType


class CardApplicationRequest(BaseModel):
    """Request body for POST /v1/applications/card"""

    address: str
    date_of_birth: str
    employment_status: str
    employer: str = "N/A"
    annual_income_cents: int = Field(..., ge=0, le=MAX_AMOUNT_CENTS)
    card_type: CardNetwork


class LoanApplicationRequest(BaseModel):
    """Request body for POST /v1/applications/loan"""

    address: str
    date_of_birth: str
    employment_status: str
    employer: str = "N/A"
    annual_income_cents: int = Field(..., ge=0, le=MAX_AMOUNT_CENTS)
    loan_amount_cents: int = Field(..., le=MAX_AMOUNT_CENTS)
    loan_term_months: int = Field(..., le=MAX_LOAN_TERM_MONTHS)


class PasskeyRequest(BaseModel):
    """Credential id produced by the platform registration ceremony"""

    credential_id: str = Field(..., min_length=1)

    @field_validator("credential_id")
    @classmethod
    def normalize_credential_id(cls, value: str) -> str:
        try:
            raw = decode_credential_id(value)
        except ValueError as e:
            raise ValueError("credential_id must be base64url") from e
        if not raw:
            raise ValueError("credential_id must not be empty")
        return encode_credential_id(raw)


class PasskeyItem(BaseModel):
    id: str
    created: str


class PasskeyListResponse(BaseModel):
    passkeys: List[PasskeyItem]


class ChatTurnRequest(BaseModel):
    """Request body for POST /v1/chat/turns"""

    message: str = Field(..., min_length=1)
    language: Optional[str] = None


class ChatImageRequest(BaseModel):
    """Request body for POST /v1/chat/image"""

    image_base64: str = Field(..., min_length=1)
    mime_type: str = "image/jpeg"
    language: Optional[str] = None


class ChatSessionResponse(BaseModel):
    closed: bool
