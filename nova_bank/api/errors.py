"""Mapping of domain failures to HTTP responses"""

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from nova_bank.domain.exceptions import DomainException
from nova_bank.domain.models import OperationResult

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "not_authenticated": 401,
    "account_not_found": 404,
    "recipient_not_found": 404,
    "username_taken": 409,
    "external_service_error": 503,
}

# Every other business failure
DEFAULT_FAILURE_STATUS = 422


def status_for(error_code: str | None) -> int:
    return STATUS_BY_CODE.get(error_code or "", DEFAULT_FAILURE_STATUS)


def ensure_success(result: OperationResult) -> OperationResult:
    """Raise the mapped HTTP error for a failed operation result"""
    if not result.success:
        raise HTTPException(status_code=status_for(result.error_code), detail=result.message)
    return result


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        return JSONResponse(status_code=status_for(exc.code), content={"detail": exc.message})

    @app.exception_handler(SQLAlchemyError)
    async def store_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(
            f"Ledger store error: {exc}",
            extra={"request_id": getattr(request.state, "request_id", "unknown")},
        )
        return JSONResponse(status_code=503, content={"detail": "Ledger store unavailable"})
