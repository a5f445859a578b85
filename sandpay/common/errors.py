"""Gateway error taxonomy and the FastAPI handlers that render it.

Every failure a caller can observe is a `GatewayError` subclass carrying a
stable `type`/`code` pair and an HTTP status. A declined payment is not an
error: it is a successful checkout with a failed outcome.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from sandpay.common.logging import logger


class ErrorDetail(BaseModel):
    """Structured error body field."""

    type: str
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Envelope returned for every non-2xx gateway response."""

    error: ErrorDetail


class GatewayError(Exception):
    """Base class for errors surfaced to API callers."""

    type = "api_error"
    code = "internal_error"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=ErrorDetail(type=self.type, code=self.code, message=self.message))


# Authentication


class AuthError(GatewayError):
    type = "authentication_error"
    code = "authentication_failed"
    status_code = 401


class MissingCredential(AuthError):
    code = "missing_api_key"
    default_message = "API key required"


class InvalidCredential(AuthError):
    code = "invalid_api_key"
    default_message = "Invalid API key"


class MerchantNotApproved(AuthError):
    code = "merchant_not_approved"
    status_code = 403
    default_message = "Merchant account not approved"


# Request validation


class ValidationError(GatewayError):
    type = "invalid_request_error"
    code = "invalid_request"
    status_code = 400
    default_message = "Invalid request"


class InvalidAmount(ValidationError):
    code = "invalid_amount"
    default_message = "Valid amount is required"


class InvalidCurrency(ValidationError):
    code = "invalid_currency"
    default_message = "Currency must be a three-letter ISO code"


class InvalidPaymentMethod(ValidationError):
    code = "invalid_payment_method"
    default_message = "Payment method must be card or bank"


class MissingField(ValidationError):
    code = "missing_field"
    default_message = "Required field missing"


# Session state


class SessionStateError(GatewayError):
    type = "session_state_error"


class SessionNotFound(SessionStateError):
    code = "session_not_found"
    status_code = 404
    default_message = "Payment session not found"


class SessionNotPayable(SessionStateError):
    code = "session_not_payable"
    status_code = 409
    default_message = "Payment session is no longer valid"


class SessionExpired(SessionStateError):
    code = "session_expired"
    status_code = 410
    default_message = "Payment session has expired"


# Store / processing


class PersistenceError(GatewayError):
    code = "persistence_error"
    default_message = "Failed to persist record"


class ProcessingError(PersistenceError):
    code = "processing_error"
    default_message = "Payment processing failed. Please try again."


class DispatchError(Exception):
    """Webhook build/send failure. Logged and retried; never sent to callers."""


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Render a `GatewayError` as the structured error body."""

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "gateway_error type=%s code=%s status=%s path=%s",
        exc.type,
        exc.code,
        exc.status_code,
        request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Map schema validation failures onto the 400 `invalid_request_error` shape."""

    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "Invalid request")
    error = InvalidAmount(message) if location == "amount" else ValidationError(message)
    return await gateway_error_handler(request, error)


def register_error_handlers(app: FastAPI) -> None:
    """Attach gateway exception handlers to an app."""

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
