"""Billing exception taxonomy and the handlers that render it.

Services raise the BillingError subclasses below; routers never catch
them.  Every handler renders the same envelope:

    {
        "error": {
            "code": "ERROR_CODE",
            "message": "Human-readable error message",
            "details": {...}  // Optional additional details
        }
    }
"""

import logging
from decimal import Decimal
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class BillingError(Exception):
    """Base exception for billing-core errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class InvoiceValidationError(BillingError):
    """Rejected input: bad line item, non-positive amount, unknown status."""

    def __init__(self, message: str, error_code: str = "VALIDATION_FAILED", details: dict | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=error_code,
            details=details,
        )


class ProjectValidationError(BillingError):
    """Rejected project or milestone input."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_FAILED",
            details=details,
        )


class PaymentExceedsBalanceError(InvoiceValidationError):
    """A payment larger than the invoice's current balance due."""

    def __init__(self, amount: Decimal, balance_due: Decimal):
        self.amount = amount
        self.balance_due = balance_due
        super().__init__(
            message=f"Payment of {amount} exceeds balance due of {balance_due}",
            error_code="PAYMENT_EXCEEDS_BALANCE",
            details={"amount": str(amount), "balance_due": str(balance_due)},
        )


class InvalidTransitionError(BillingError):
    """A state-machine transition that is not allowed from the current status."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="INVALID_TRANSITION",
        )


class ResourceNotFoundError(BillingError):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class ConflictError(BillingError):
    """The request conflicts with existing data (e.g. deleting a billed project)."""

    def __init__(self, message: str, error_code: str = "CONFLICT"):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code=error_code,
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    body = {"code": error_code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


def _where(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


async def billing_exception_handler(request: Request, exc: BillingError) -> JSONResponse:
    logger.warning(
        "%s %s rejected: %s (%s)",
        request.method, request.url.path, exc.message, exc.error_code,
        extra=_where(request),
    )
    return create_error_response(exc.status_code, exc.message, exc.error_code, exc.details)


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail,
                     extra=_where(request))
    return create_error_response(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Request bodies that fail schema validation, one entry per bad field."""
    errors = [
        {
            "field": " -> ".join(str(part) for part in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    logger.warning("Invalid request body on %s: %d error(s)", request.url.path, len(errors),
                   extra=_where(request))
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        "VALIDATION_ERROR",
        {"errors": errors},
    )


# (substring of the driver message, error code, client-facing message)
INTEGRITY_VIOLATIONS = (
    ("unique", "DUPLICATE_RECORD", "A record with this value already exists"),
    ("foreign key", "FOREIGN_KEY_VIOLATION", "Referenced record does not exist"),
    ("not null", "NULL_VALUE_NOT_ALLOWED", "Required field is missing"),
    ("check", "CONSTRAINT_VIOLATION", "Value violates a billing constraint"),
)


async def integrity_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    raw = str(getattr(exc, "orig", exc)).lower()
    logger.error("Integrity error on %s: %s", request.url.path, raw, extra=_where(request))
    for needle, code, message in INTEGRITY_VIOLATIONS:
        if needle in raw:
            return create_error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, message, code)
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY, "Database constraint violation", "INTEGRITY_ERROR",
    )


async def stale_data_exception_handler(request: Request, exc: StaleDataError) -> JSONResponse:
    """Optimistic-lock failure on a versioned invoice or project."""
    logger.warning("Concurrent update rejected on %s: %s", request.url.path, exc,
                   extra=_where(request))
    return create_error_response(
        status.HTTP_409_CONFLICT,
        "The record was modified by another request. Reload and retry.",
        "CONCURRENT_UPDATE",
    )


async def operational_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("Database unavailable on %s: %s", request.url.path, exc, extra=_where(request))
    return create_error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Database temporarily unavailable. Please try again.",
        "DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s", request.url.path, extra=_where(request))
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        "INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    handlers = (
        (BillingError, billing_exception_handler),
        (HTTPException, http_exception_handler),
        (StarletteHTTPException, http_exception_handler),
        (RequestValidationError, validation_exception_handler),
        (ValidationError, validation_exception_handler),
        (IntegrityError, integrity_exception_handler),
        (StaleDataError, stale_data_exception_handler),
        (OperationalError, operational_exception_handler),
        (Exception, general_exception_handler),
    )
    for exc_class, handler in handlers:
        app.add_exception_handler(exc_class, handler)
