"""
SeedLedger Exceptions.

Centralized exception definitions with:
- Error codes for client handling
- HTTP status code mapping
- Structured error responses

Settlement batches never raise these for per-item failures; they are caught,
recorded as SettlementError entries and the batch continues. Only
ValidationError escapes the batch entry points.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


# ============================================================================
# ERROR CODES
# ============================================================================


class ErrorCode(str, Enum):
    """Application error codes."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    NOT_FOUND = "E1002"

    # Settlement errors (4xxx)
    RESOLUTION_NOT_FOUND = "E4000"
    USER_NOT_FOUND = "E4001"
    ALREADY_RESOLVED = "E4002"

    # Data errors (6xxx)
    DATA_INTEGRITY_ERROR = "E6001"


# ============================================================================
# ERROR RESPONSE MODEL
# ============================================================================


class ErrorDetail(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Unified error body returned by the API."""

    error: ErrorDetail
    request_id: Optional[str] = None
    timestamp: Optional[str] = None


# ============================================================================
# BASE EXCEPTION
# ============================================================================


class SeedLedgerError(Exception):
    """Base exception for SeedLedger."""

    # Short machine-readable kind used in settlement error lists
    kind: str = "internal_error"

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.code.value,
                message=self.message,
                field=self.field,
                details=self.details,
            ),
            request_id=request_id,
            timestamp=datetime.utcnow().isoformat(),
        )


# ============================================================================
# SPECIFIC EXCEPTIONS
# ============================================================================


class ValidationError(SeedLedgerError):
    """Invalid call parameters."""

    kind = "validation_error"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            field=field,
            details=details,
        )


class NotFoundError(SeedLedgerError):
    """Resource not found error."""

    kind = "not_found"

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            code=code,
            status_code=404,
            details={"resource": resource, "identifier": identifier},
        )


class ResolutionNotFoundError(NotFoundError):
    kind = "resolution_not_found"

    def __init__(self, decision_id: str):
        super().__init__("Resolution", decision_id, code=ErrorCode.RESOLUTION_NOT_FOUND)


class UserNotFoundError(NotFoundError):
    kind = "user_not_found"

    def __init__(self, user_id: str):
        super().__init__("User", user_id, code=ErrorCode.USER_NOT_FOUND)


class AlreadyResolvedError(SeedLedgerError):
    """A prediction lost the race for its pending → resolved transition."""

    kind = "already_resolved"

    def __init__(self, prediction_id: str):
        super().__init__(
            message=f"Prediction already resolved: {prediction_id}",
            code=ErrorCode.ALREADY_RESOLVED,
            status_code=409,
            details={"prediction_id": prediction_id},
        )


class DataIntegrityError(SeedLedgerError):
    kind = "data_integrity_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code=ErrorCode.DATA_INTEGRITY_ERROR,
            status_code=500,
            details=details,
        )


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================


async def seedledger_exception_handler(
    request: Request,
    exc: SeedLedgerError,
) -> JSONResponse:
    """Handle SeedLedgerError exceptions."""
    request_id = getattr(request.state, "request_id", None)

    logger.warning(
        "seedledger_error",
        error_code=exc.code.value,
        message=exc.message,
        status_code=exc.status_code,
        request_id=request_id,
        details=exc.details,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(request_id).model_dump(),
    )
