"""
Error Handling Module for the Reconciliation Ledger

This module provides centralized error handling with:
- Custom exception hierarchy
- Standardized error responses
- Error logging
- Reconciliation-specific validation and authorization errors
- Database error handling

Chain-verification mismatches are not exceptions: they are data returned
by the verification call.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("recon_ledger.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    EMPTY_SELECTION = "EMPTY_SELECTION"
    INVALID_SELECTION = "INVALID_SELECTION"

    # Authentication/Authorization Errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT_OF_INTEREST = "CONFLICT_OF_INTEREST"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    MATCH_NOT_FOUND = "MATCH_NOT_FOUND"
    PERIOD_NOT_FOUND = "PERIOD_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    ALREADY_MATCHED = "ALREADY_MATCHED"
    ALREADY_APPROVED = "ALREADY_APPROVED"
    VERSION_CONFLICT = "VERSION_CONFLICT"

    # Business Logic Errors (422)
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    PERIOD_CLOSED = "PERIOD_CLOSED"

    # Rate Limiting (429)
    RATE_LIMITED = "RATE_LIMITED"

    # External Service Errors (502/503)
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


def _ids(values: Iterable[Union[str, UUID]]) -> List[str]:
    return [str(v) for v in values]


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
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
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

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


class InvalidDateRangeException(ValidationException):
    """Invalid date range"""

    def __init__(self, start_date: date, end_date: date, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid date range: {start_date} to {end_date}. Start date must not be after end date.",
            code=ErrorCode.INVALID_DATE_RANGE,
            details={"start_date": str(start_date), "end_date": str(end_date)},
        )


class EmptySelectionException(ValidationException):
    """A match needs at least one transaction on each side"""

    def __init__(self, side: str):
        super().__init__(
            message=f"At least one {side.lower()} transaction must be selected",
            field=f"{side.lower()}_transaction_ids",
            code=ErrorCode.EMPTY_SELECTION,
            details={"side": side},
        )


class InvalidSelectionException(ValidationException):
    """Selection is not a valid partition of transactions into two sides"""

    def __init__(self, message: str, transaction_ids: Iterable[Union[str, UUID]]):
        super().__init__(
            message=message,
            code=ErrorCode.INVALID_SELECTION,
            details={"transaction_ids": _ids(transaction_ids)},
        )


# ============================================================================
# Authorization Exceptions
# ============================================================================

class AuthorizationException(AppException):
    """Authorization denied exception"""

    def __init__(
        self,
        message: str = "Permission denied",
        code: ErrorCode = ErrorCode.FORBIDDEN,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


class ConflictOfInterestException(AuthorizationException):
    """Separation of duties: the maker may not also be the checker"""

    def __init__(self, match_id: Union[str, UUID], actor_id: str):
        super().__init__(
            message="Separation of duties: you cannot approve a match you created. Escalate to another approver.",
            code=ErrorCode.CONFLICT_OF_INTEREST,
            details={
                "match_id": str(match_id),
                "actor_id": actor_id,
                "action": "escalate_to_another_approver",
            },
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
        details: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        _details = {"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None}
        _details.update(details or {})
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=_details,
        )


class TransactionNotFoundException(NotFoundException):
    """One or more transactions not found"""

    def __init__(self, transaction_ids: Iterable[Union[str, UUID]]):
        missing = _ids(transaction_ids)
        super().__init__(
            resource_type="Transaction",
            resource_id=missing[0] if len(missing) == 1 else None,
            message=f"Transaction(s) not found: {', '.join(missing)}",
            code=ErrorCode.TRANSACTION_NOT_FOUND,
            details={"missing_ids": missing},
        )
        self.missing_ids = missing


class MatchNotFoundException(NotFoundException):
    """Match group not found"""

    def __init__(self, match_id: Union[str, UUID]):
        super().__init__(
            resource_type="MatchGroup",
            resource_id=match_id,
            code=ErrorCode.MATCH_NOT_FOUND,
        )


class PeriodNotFoundException(NotFoundException):
    """Financial period not found"""

    def __init__(self, period_id: Union[str, UUID]):
        super().__init__(
            resource_type="FinancialPeriod",
            resource_id=period_id,
            code=ErrorCode.PERIOD_NOT_FOUND,
        )


class ConflictException(AppException):
    """Resource conflict exception"""

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


class AlreadyMatchedException(ConflictException):
    """Transactions already belong to a live match group"""

    def __init__(self, transaction_ids: Iterable[Union[str, UUID]]):
        matched = _ids(transaction_ids)
        super().__init__(
            message=f"Transaction(s) already matched: {', '.join(matched)}",
            resource_type="Transaction",
            code=ErrorCode.ALREADY_MATCHED,
            details={"transaction_ids": matched},
        )
        self.transaction_ids = matched


class AlreadyApprovedException(ConflictException):
    """Match group is already approved"""

    def __init__(self, match_id: Union[str, UUID]):
        super().__init__(
            message=f"Match '{match_id}' is already approved",
            resource_type="MatchGroup",
            code=ErrorCode.ALREADY_APPROVED,
            details={"match_id": str(match_id)},
        )


class StaleVersionException(ConflictException):
    """Optimistic-concurrency check failed"""

    def __init__(
        self,
        match_id: Union[str, UUID],
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ):
        super().__init__(
            message=f"Match '{match_id}' was modified by another request. Reload and retry.",
            resource_type="MatchGroup",
            code=ErrorCode.VERSION_CONFLICT,
            details={
                "match_id": str(match_id),
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )


class DuplicateEntryException(ConflictException):
    """Duplicate entry exception"""

    def __init__(self, resource_type: str, field: str, value: str):
        super().__init__(
            message=f"{resource_type} with {field} '{value}' already exists",
            resource_type=resource_type,
            code=ErrorCode.DUPLICATE_ENTRY,
            details={"field": field, "value": value},
        )


# ============================================================================
# Business Logic Exceptions
# ============================================================================

class BusinessRuleException(AppException):
    """Business rule violation exception"""

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if rule:
            _details["violated_rule"] = rule
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=_details,
        )


class PeriodClosedException(BusinessRuleException):
    """Operation touches a transaction dated inside a closed period"""

    def __init__(self, locked_date: date, period_name: str, operation: str = "modification"):
        super().__init__(
            message=f"Cannot perform {operation} in closed period '{period_name}' (locked date: {locked_date.isoformat()})",
            rule="PERIOD_OPEN",
            code=ErrorCode.PERIOD_CLOSED,
            details={
                "locked_date": locked_date.isoformat(),
                "period": period_name,
                "operation": operation,
            },
        )


# ============================================================================
# Database Exceptions
# ============================================================================

class DatabaseException(AppException):
    """Database error exception"""

    def __init__(
        self,
        message: str = "A database error occurred",
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            original_error=original_error,
        )


class StorageException(DatabaseException):
    """Storage or transaction failure; the enclosing unit was rolled back"""

    def __init__(self, operation: str, original_error: Optional[Exception] = None):
        super().__init__(
            message=f"Storage error during {operation}; no changes were applied",
            code=ErrorCode.STORAGE_ERROR,
            original_error=original_error,
        )
        self.operation = operation


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details

    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
        exc_info=exc.original_error,
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    # Map status codes to error codes
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        429: ErrorCode.RATE_LIMITED,
        500: ErrorCode.INTERNAL_ERROR,
        502: ErrorCode.EXTERNAL_SERVICE_ERROR,
        503: ErrorCode.EXTERNAL_SERVICE_ERROR,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
        elif "foreign key" in error_str:
            error_message = "Referenced record does not exist"
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    # Don't expose internal error details
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = [
    # Base
    "AppException",
    "ErrorCode",

    # Validation
    "ValidationException",
    "InvalidDateRangeException",
    "EmptySelectionException",
    "InvalidSelectionException",

    # Authorization
    "AuthorizationException",
    "ConflictOfInterestException",

    # Resource
    "NotFoundException",
    "TransactionNotFoundException",
    "MatchNotFoundException",
    "PeriodNotFoundException",
    "ConflictException",
    "AlreadyMatchedException",
    "AlreadyApprovedException",
    "StaleVersionException",
    "DuplicateEntryException",

    # Business Logic
    "BusinessRuleException",
    "PeriodClosedException",

    # Database
    "DatabaseException",
    "StorageException",

    # Handlers
    "setup_exception_handlers",
    "create_error_response",
]
