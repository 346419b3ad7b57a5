"""Custom exceptions and handlers for consistent error responses.

Provides standardized error formatting, security-safe error messages,
and proper logging for debugging.

Receiving errors follow the commit taxonomy:

    DraftValidationError    user-correctable, names the failing step/items
    ReferenceNotFoundError  client or produce no longer resolves at commit
    PartialCommitError      header written, item rows incomplete
    TransientStoreError     record store unavailable / timed out

Commit errors carry ``retryable`` plus the stage, collection, operation and
record index of the failing store call in ``details``.
"""

import logging
import traceback
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class FreshIntakeException(Exception):
    """Base exception for FreshIntake application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Union[dict, None] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class BusinessLogicError(FreshIntakeException):
    """Exception for business logic violations."""

    def __init__(
        self,
        message: str,
        error_code: str = "BUSINESS_LOGIC_ERROR",
        details: Union[dict, None] = None,
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=error_code,
            details=details,
        )


class ResourceNotFoundError(FreshIntakeException):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


# ── Receiving wizard ─────────────────────────────────────────

class DraftValidationError(BusinessLogicError):
    """A step (or the pre-commit re-check) rejected the draft."""

    def __init__(self, failure):
        self.failure = failure
        super().__init__(
            message=failure.message,
            error_code="STEP_VALIDATION_FAILED",
            details=failure.to_details(),
        )


class StepOutOfOrderError(FreshIntakeException):
    """A step was submitted that is not the wizard's current step."""

    def __init__(self, requested: int, current: int):
        super().__init__(
            message=f"Step {requested} cannot be submitted while the draft is at step {current}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="STEP_OUT_OF_ORDER",
            details={"requested_step": requested, "current_step": current},
        )


class DraftCorruptedError(FreshIntakeException):
    """The stored draft no longer parses as a valid Draft."""

    def __init__(self, draft_id: str, reason: str):
        super().__init__(
            message=f"Stored draft {draft_id} is invalid and must be restarted",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="DRAFT_CORRUPTED",
            details={"draft_id": draft_id, "reason": reason},
        )


class CommitError(FreshIntakeException):
    """A commit failed at a specific point of the write sequence."""

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        collection: str | None = None,
        operation: str | None = None,
        record_index: int | None = None,
        retryable: bool = True,
        receiving_id: str | None = None,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        error_code: str = "COMMIT_FAILED",
        extra_details: dict | None = None,
    ):
        self.stage = stage
        self.collection = collection
        self.operation = operation
        self.record_index = record_index
        self.retryable = retryable
        self.receiving_id = receiving_id
        details = {
            "stage": stage,
            "collection": collection,
            "operation": operation,
            "record_index": record_index,
            "retryable": retryable,
            "receiving_id": receiving_id,
        }
        if extra_details:
            details.update(extra_details)
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=details,
        )


class TransientStoreError(CommitError):
    """Record store unreachable or timed out (after retries)."""

    def __init__(self, message: str = "Record store temporarily unavailable. Please try again.", **kwargs):
        kwargs.setdefault("retryable", True)
        super().__init__(
            message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="STORE_UNAVAILABLE",
            **kwargs,
        )


class ReferenceNotFoundError(CommitError):
    """Client or produce referenced by the draft no longer exists."""

    def __init__(self, missing: dict[str, list[str]], **kwargs):
        parts = [f"{field} {', '.join(ids)}" for field, ids in missing.items() if ids]
        message = "Invalid reference to client or produce item. Please check your selections"
        if parts:
            message += f" ({'; '.join(parts)})"
        kwargs.setdefault("stage", "reference_check")
        super().__init__(
            message + ".",
            retryable=False,
            status_code=status.HTTP_409_CONFLICT,
            error_code="REFERENCE_NOT_FOUND",
            extra_details={"missing": missing},
            **kwargs,
        )


class PartialCommitError(CommitError):
    """Header written but one or more item rows are missing.

    Retrying is safe: the retry finds the header by idempotency key and
    only inserts the missing rows.
    """

    def __init__(self, receiving_id: str, **kwargs):
        kwargs.setdefault("stage", "compensation")
        super().__init__(
            f"Receiving record {receiving_id} was only partially saved. "
            "Retry to complete it.",
            receiving_id=receiving_id,
            retryable=True,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="PARTIAL_COMMIT",
            **kwargs,
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    """Create standardized error response.

    Format:
    {
        "error": {
            "code": "ERROR_CODE",
            "message": "Human-readable error message",
            "details": {...}  // Optional additional details
        }
    }
    """
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
    )


async def freshintake_exception_handler(
    request: Request,
    exc: FreshIntakeException,
) -> JSONResponse:
    """Handle custom FreshIntake exceptions."""
    logger.warning(
        f"FreshIntake exception: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    # Log non-4xx errors
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(
        f"Validation error on {request.url.path}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": exc.errors(),
        },
    )

    # Format validation errors for better readability
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


async def database_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Handle database integrity errors (unique violations, foreign key, etc.)."""
    logger.error(
        f"Database integrity error on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    # Extract meaningful error message
    error_msg = str(exc.orig) if hasattr(exc, "orig") else str(exc)

    # Check for common integrity violations
    if "unique" in error_msg.lower():
        message = "A record with this value already exists"
        error_code = "DUPLICATE_RECORD"
    elif "foreign key" in error_msg.lower():
        message = "Referenced record does not exist"
        error_code = "FOREIGN_KEY_VIOLATION"
    elif "not null" in error_msg.lower():
        message = "Required field is missing"
        error_code = "NULL_VALUE_NOT_ALLOWED"
    else:
        message = "Database constraint violation"
        error_code = "INTEGRITY_ERROR"

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message=message,
        error_code=error_code,
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    """Handle database operational errors (connection issues, etc.)."""
    logger.error(
        f"Database operational error on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    # Log full traceback for debugging
    logger.error(
        f"Unhandled exception on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
        exc_info=True,
    )

    # Return generic error to client (don't expose internal details)
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(FreshIntakeException, freshintake_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
