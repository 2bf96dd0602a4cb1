"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
Ledger and payout errors carry enough detail for the caller to act on them
(e.g. the current available balance).
"""

import logging
from decimal import Decimal
from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


# Ledger validation errors (never retried)

class LedgerValidationError(AppException):
    """Raised when ledger input has a bad shape or range."""

    def __init__(self, message: str, error_code: str = "ERR_VALIDATION_001", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InvalidAmountError(LedgerValidationError):
    def __init__(self, amount: Any):
        super().__init__(
            message="Amount must be greater than zero",
            error_code="ERR_VALIDATION_002",
            details={"amount": str(amount)}
        )


class InvalidPurposeError(LedgerValidationError):
    def __init__(self, purpose: Any, allowed: list):
        super().__init__(
            message=f"Invalid payment purpose: {purpose}",
            error_code="ERR_VALIDATION_003",
            details={"purpose": purpose, "allowed": allowed}
        )


class InvalidRateError(LedgerValidationError):
    def __init__(self, rate: Any):
        super().__init__(
            message="Commission rate must be between 0 and 100",
            error_code="ERR_VALIDATION_004",
            details={"commission_rate": str(rate)}
        )


class PayoutSettingsError(LedgerValidationError):
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message=message, error_code="ERR_VALIDATION_005", details=details)


class PaymentAmountMismatchError(LedgerValidationError):
    def __init__(self, transaction_id: str, expected: Decimal, received: Any):
        super().__init__(
            message="Callback amount does not match the recorded payment",
            error_code="ERR_VALIDATION_006",
            details={
                "transaction_id": transaction_id,
                "expected": str(expected),
                "received": str(received)
            }
        )


class ProofReferenceReusedError(LedgerValidationError):
    def __init__(self, proof_reference: str):
        super().__init__(
            message="This payment proof has already been used for another payment",
            error_code="ERR_VALIDATION_007",
            details={"proof_reference": proof_reference}
        )


# State machine / business rule errors

class IllegalTransitionError(AppException):
    """Raised when a state machine transition is not allowed from the current state."""

    def __init__(self, entity: str, current: Any, target: Any):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            message=f"{entity} cannot move from {current_value} to {target_value}",
            error_code="ERR_STATE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"entity": entity, "current": current_value, "target": target_value}
        )


class InsufficientBalanceError(AppException):
    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__(
            message=f"Insufficient balance. Available: {available}",
            error_code="ERR_BALANCE_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"requested": str(requested), "available_balance": str(available)}
        )


class BelowMinimumError(AppException):
    def __init__(self, requested: Decimal, minimum: Decimal):
        super().__init__(
            message=f"Minimum payout amount is {minimum}",
            error_code="ERR_BALANCE_002",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"requested": str(requested), "minimum": str(minimum)}
        )


class PayoutMethodNotSetError(AppException):
    def __init__(self):
        super().__init__(
            message="Please set up your payout method first",
            error_code="ERR_PAYOUT_001",
            status_code=status.HTTP_400_BAD_REQUEST
        )


class DuplicateTransactionError(AppException):
    def __init__(self, transaction_id: str):
        super().__init__(
            message=f"Transaction {transaction_id} already exists",
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"transaction_id": transaction_id}
        )


class SettlementInProgressError(AppException):
    """Another worker holds the settlement lock; the caller may retry."""

    def __init__(self, key: str):
        super().__init__(
            message="Settlement already in progress, retry shortly",
            error_code="ERR_CONFLICT_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"key": key}
        )


class ExternalVerifierUnavailableError(AppException):
    """Transient gateway failure. The ledger entry stays pending."""

    def __init__(self, transaction_id: str, reason: str):
        super().__init__(
            message="Payment verifier unavailable, payment left pending for retry",
            error_code="ERR_VERIFIER_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"transaction_id": transaction_id, "reason": reason}
        )


class InvariantViolationError(AppException):
    """A ledger invariant check failed. Indicates a bug; never shown verbatim."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_INTERNAL_SERVER",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )
        logger.critical("Ledger invariant violated: %s", message, extra={"details": self.details})


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    if isinstance(exc, InvariantViolationError):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error_code": exc.error_code,
                "message": "An internal server error occurred",
                "details": {}
            }
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(jsonable_errors(exc))
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception instances (e.g. from Decimal validators)
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
