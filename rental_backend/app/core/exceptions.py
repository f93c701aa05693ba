"""
Custom exceptions and error handlers for consistent error responses.

Every billing-engine failure is an AppException subclass carrying a stable
error code, so callers can surface a specific message instead of a generic one.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict

logger = logging.getLogger("rental_billing.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


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


class ContractExpiredError(AppException):
    """Raised when a contract has no periods left to open."""

    def __init__(self, contract_id: Any, duration_months: int):
        super().__init__(
            message=f"Contract {contract_id} already reached its last month ({duration_months})",
            error_code="ERR_CONTRACT_EXPIRED",
            status_code=status.HTTP_409_CONFLICT,
            details={"contract_id": contract_id, "duration_months": duration_months}
        )


class DuplicateAdjustmentError(AppException):
    """Raised when an adjustment is already active for (contract, target month)."""

    def __init__(self, contract_id: Any, target_month: int):
        super().__init__(
            message=f"Contract {contract_id} already has an adjustment applied for month {target_month}",
            error_code="ERR_ADJUSTMENT_DUPLICATE",
            status_code=status.HTTP_409_CONFLICT,
            details={"contract_id": contract_id, "target_month": target_month}
        )


class NoAdjustmentToUndoError(AppException):
    """Raised when undoing an adjustment that is not active."""

    def __init__(self, contract_id: Any, target_month: int):
        super().__init__(
            message=f"Contract {contract_id} has no active adjustment for month {target_month}",
            error_code="ERR_ADJUSTMENT_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"contract_id": contract_id, "target_month": target_month}
        )


class ImmutableCompletedPeriodError(AppException):
    """Raised when a change would rewrite a settled period."""

    def __init__(self, message: str, record_id: Any = None):
        super().__init__(
            message=message,
            error_code="ERR_PERIOD_IMMUTABLE",
            status_code=status.HTTP_409_CONFLICT,
            details={"record_id": record_id}
        )


class DuplicatePeriodError(AppException):
    """Raised when a ledger entry already exists for (contract, month number)."""

    def __init__(self, contract_id: Any, month_number: int):
        super().__init__(
            message=f"Period {month_number} of contract {contract_id} is already open",
            error_code="ERR_PERIOD_DUPLICATE",
            status_code=status.HTTP_409_CONFLICT,
            details={"contract_id": contract_id, "month_number": month_number}
        )


class DistributionOverflowError(AppException):
    """Raised when a percentage edit would push locked shares above 100."""

    def __init__(self, record_id: Any, locked_sum):
        super().__init__(
            message=f"Locked percentages would add up to {locked_sum}, above 100",
            error_code="ERR_DISTRIBUTION_OVERFLOW",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"record_id": record_id, "locked_sum": str(locked_sum)}
        )


class InvalidDistributionError(AppException):
    """Raised when a distribution cannot be confirmed or submitted."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_DISTRIBUTION_INVALID",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class BatchConflictError(AppException):
    """Raised when a batch submission collides with a concurrent change."""

    def __init__(self, message: str = "Ledger entries changed while the batch was being prepared", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_BATCH_CONFLICT",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class DuplicateReceiptError(AppException):
    """Raised when a receipt number is taken by a concurrent payment."""

    def __init__(self, group_id: Any, receipt_number: str):
        super().__init__(
            message=f"Receipt {receipt_number} was already issued in group {group_id}; retry the payment",
            error_code="ERR_RECEIPT_DUPLICATE",
            status_code=status.HTTP_409_CONFLICT,
            details={"group_id": group_id, "receipt_number": receipt_number}
        )


class DebtBlockError(AppException):
    """Raised when paying a period while the contract has open debts."""

    def __init__(self, contract_id: Any, debts: list):
        super().__init__(
            message=f"Contract {contract_id} has {len(debts)} open debt(s); settle them first",
            error_code="ERR_DEBT_BLOCK",
            status_code=status.HTTP_409_CONFLICT,
            details={"contract_id": contract_id, "debts": debts}
        )


class DebtOverpaymentError(AppException):
    """Raised when a debt payment exceeds what the debt still owes."""

    def __init__(self, debt_id: Any, outstanding):
        super().__init__(
            message=f"Debt {debt_id} only owes {outstanding}",
            error_code="ERR_DEBT_OVERPAYMENT",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"debt_id": debt_id, "outstanding": str(outstanding)}
        )


class IndexInUseError(AppException):
    """Raised when deleting an adjustment index still referenced by contracts."""

    def __init__(self, index_id: Any, contracts: int):
        super().__init__(
            message=f"Adjustment index {index_id} is used by {contracts} contract(s)",
            error_code="ERR_INDEX_IN_USE",
            status_code=status.HTTP_409_CONFLICT,
            details={"index_id": index_id, "contracts": contracts}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    logger.warning("%s: %s", exc.error_code, exc.message)
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
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions (persistence outages included)."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
