"""Exception handlers - domain errors to stable error codes.

Every error response has the same body:
    {"status": 404, "message": "...", "errorCode": "BOOKING_NOT_FOUND",
     "timestamp": "2026-01-01T00:00:00+00:00"}
Request validation errors add an "errors" map of field -> message.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from carrental.domain.bookings import BookingNotFoundError, InvalidBookingStateError
from carrental.domain.rules import BookingValidationError
from carrental.domain.strategies import PaymentRejectedError, UnsupportedPaymentModeError
from carrental.infra.stores import ConcurrentModificationError
from carrental.infra.time import utc_now
from carrental.observability.correlation import get_correlation_id
from carrental.observability.logging import get_logger
from carrental.observability.redaction import safe_log_context
from carrental.payments.card_client import CardServiceUnavailableError

logger = get_logger(__name__)

BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
VALIDATION_ERROR = "VALIDATION_ERROR"
PAYMENT_REJECTED = "PAYMENT_REJECTED"
INVALID_STATE = "INVALID_STATE"
SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
INTERNAL_ERROR = "INTERNAL_ERROR"

# exception type -> (HTTP status, error code); first match wins
_ERROR_MAP: list[tuple[type[Exception], int, str]] = [
    (BookingNotFoundError, 404, BOOKING_NOT_FOUND),
    (BookingValidationError, 400, VALIDATION_ERROR),
    (UnsupportedPaymentModeError, 400, VALIDATION_ERROR),
    (PaymentRejectedError, 422, PAYMENT_REJECTED),
    (InvalidBookingStateError, 409, INVALID_STATE),
    (ConcurrentModificationError, 409, INVALID_STATE),
    (CardServiceUnavailableError, 503, SERVICE_UNAVAILABLE),
]


def error_body(status: int, message: str, error_code: str, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "status": status,
        "message": message,
        "errorCode": error_code,
        "timestamp": utc_now().isoformat(),
    }
    body.update(extra)
    return body


def _field_name(loc: tuple[Any, ...]) -> str:
    # ("body", "customerName") -> "customerName"
    parts = [str(p) for p in loc if p != "body"]
    return ".".join(parts) or "body"


async def _handle_domain_error(request: Request, exc: Exception) -> JSONResponse:
    for exc_type, status, code in _ERROR_MAP:
        if isinstance(exc, exc_type):
            log = logger.error if status >= 500 else logger.warning
            log(
                "request failed",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=get_correlation_id(),
                        path=request.url.path,
                        error_code=code,
                        error_type=type(exc).__name__,
                    )
                },
            )
            return JSONResponse(status_code=status, content=error_body(status, str(exc), code))
    return await _handle_unexpected(request, exc)


async def _handle_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = {_field_name(tuple(err.get("loc", ()))): err.get("msg", "") for err in exc.errors()}
    logger.warning(
        "request validation failed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                path=request.url.path,
                fields=sorted(errors),
            )
        },
    )
    return JSONResponse(
        status_code=400,
        content=error_body(400, "Validation failed", VALIDATION_ERROR, errors=errors),
    )


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unexpected error",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                path=request.url.path,
                error_type=type(exc).__name__,
            )
        },
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content=error_body(500, "An unexpected error occurred", INTERNAL_ERROR),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install the exception handlers on an app."""
    for exc_type, _, _ in _ERROR_MAP:
        app.add_exception_handler(exc_type, _handle_domain_error)
    app.add_exception_handler(RequestValidationError, _handle_validation)
    app.add_exception_handler(Exception, _handle_unexpected)
