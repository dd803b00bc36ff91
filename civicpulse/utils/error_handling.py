"""
CivicPulse - Error Handling

Domain exceptions for billing and mandate operations and the FastAPI
handlers that render them. Every error body has the same shape:

    {"detail": {"code", "message", "timestamp", "field"?, "details"?}}
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import UUID

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from civicpulse.utils.dates import utcnow

logger = logging.getLogger("civicpulse.errors")


class ErrorCode(str, Enum):
    # 422
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    ADDON_NOT_AVAILABLE = "ADDON_NOT_AVAILABLE"

    # 404 / 409
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    DUPLICATE_OPERATION = "DUPLICATE_OPERATION"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"

    # 412
    PRECONDITION_FAILED = "PRECONDITION_FAILED"

    # Mapped from plain HTTP errors raised by the framework
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # 500
    DATABASE_ERROR = "DATABASE_ERROR"
    DATABASE_UNAVAILABLE = "DATABASE_UNAVAILABLE"
    BILLING_INTEGRITY_ERROR = "BILLING_INTEGRITY_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.timestamp = utcnow()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Input
# ============================================================================

class ValidationException(AppException):
    """Malformed input: bad quantities, blank required fields"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidQuantityException(ValidationException):
    def __init__(self, quantity: Any):
        super().__init__(
            message=f"Invalid quantity: {quantity}. Quantity must be an integer >= 0.",
            field="quantity",
            code=ErrorCode.INVALID_QUANTITY,
            details={"provided_quantity": str(quantity)},
        )


class AddonNotAvailableException(ValidationException):
    """Add-on is disabled for the plan"""

    def __init__(self, addon_code: str, plan_code: str):
        super().__init__(
            message=f"Add-on {addon_code} is not available for plan {plan_code}",
            field="addon_id",
            code=ErrorCode.ADDON_NOT_AVAILABLE,
            details={"addon": addon_code, "plan": plan_code},
        )


# ============================================================================
# Resources and state
# ============================================================================

class NotFoundException(AppException):
    """Missing or soft-deleted record"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class ConflictException(AppException):
    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if resource_type:
            _details["resource_type"] = resource_type
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=_details,
        )


class InvalidStateException(ConflictException):
    """A transition was attempted from a status that does not allow it"""

    def __init__(
        self,
        resource_type: str,
        from_state: str,
        action: str,
        message: Optional[str] = None,
    ):
        self.from_state = from_state
        self.action = action
        super().__init__(
            message=message or f"Cannot {action} {resource_type} in status {from_state}",
            resource_type=resource_type,
            code=ErrorCode.INVALID_STATE,
            details={"from_state": from_state, "action": action},
        )


class DuplicateOperationException(ConflictException):
    """The operation was already performed and must not run twice"""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            resource_type=resource_type,
            code=ErrorCode.DUPLICATE_OPERATION,
            details=details,
        )


class PreconditionFailedException(AppException):
    """A required prior condition does not hold"""

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if rule:
            _details["violated_rule"] = rule
        super().__init__(
            code=ErrorCode.PRECONDITION_FAILED,
            message=message,
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            details=_details,
        )


class BillingIntegrityException(AppException):
    """
    Financial integrity violation (negative ledger amount, NaN proration,
    snapshot total out of line with the stored amount).

    The operation is aborted and nothing is persisted; the error is surfaced
    for operator escalation rather than corrected silently.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.BILLING_INTEGRITY_ERROR,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    content = {
        "code": code.value,
        "message": message,
        "timestamp": utcnow().isoformat(),
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content={"detail": content})


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    if exc.code == ErrorCode.BILLING_INTEGRITY_ERROR:
        logger.error(f"Billing integrity violation on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{exc.code.value} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code_map = {
        400: ErrorCode.BAD_REQUEST,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        405: ErrorCode.BAD_REQUEST,
        409: ErrorCode.RESOURCE_CONFLICT,
        412: ErrorCode.PRECONDITION_FAILED,
        422: ErrorCode.VALIDATION_ERROR,
    }
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    logger.warning(f"HTTP {exc.status_code} on {request.method} {request.url.path}: {message}")
    return create_error_response(
        code=code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(f"Request validation failed on {request.url.path}: {len(errors)} error(s)")
    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Constraint violations that slip past the services' own checks (a
    concurrent insert of the same reminder level, a document sequence race)
    surface as 409; anything else is a 500.
    """
    code = ErrorCode.DATABASE_ERROR
    message = "A database error occurred"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, IntegrityError):
        original = str(exc.orig).lower() if exc.orig else ""
        if "unique" in original or "duplicate" in original:
            code = ErrorCode.DUPLICATE_ENTRY
            message = "A record with this value already exists"
            status_code = status.HTTP_409_CONFLICT
        else:
            message = "Data integrity constraint violated"
    elif isinstance(exc, OperationalError):
        code = ErrorCode.DATABASE_UNAVAILABLE
        message = "Database operation failed"

    logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}", exc_info=True)
    return create_error_response(code=code, message=message, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.critical(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}",
        exc_info=True,
    )
    # Internal details stay in the logs
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


# ============================================================================
# Input helpers
# ============================================================================

def validate_quantity(quantity: Any) -> int:
    """Add-on quantities are integers >= 0; bools are rejected."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise InvalidQuantityException(quantity)
    return quantity


def require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationException(f"{field} is required", field=field)
    return value.strip()
