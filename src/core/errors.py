"""Error taxonomy for the fulfillment engine and its HTTP rendering."""

from enum import Enum

from pydantic import BaseModel


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Input errors
    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_INVALID_STATE_TRANSITION = "ERR_INVALID_STATE_TRANSITION"
    ERR_ORDER_NOT_CANCELLABLE = "ERR_ORDER_NOT_CANCELLABLE"

    # Authorization errors
    ERR_AUTHENTICATION_REQUIRED = "ERR_AUTHENTICATION_REQUIRED"
    ERR_PERMISSION_DENIED = "ERR_PERMISSION_DENIED"

    # Lookup errors
    ERR_ORDER_NOT_FOUND = "ERR_ORDER_NOT_FOUND"
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"
    ERR_USER_NOT_FOUND = "ERR_USER_NOT_FOUND"

    # Concurrency errors
    ERR_STALE_STATE = "ERR_STALE_STATE"

    # Collaborator errors
    ERR_UPSTREAM_FAILURE = "ERR_UPSTREAM_FAILURE"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


class FulfillmentError(Exception):
    """Base class for errors raised by the fulfillment core."""

    code: str = ErrorCode.ERR_UNKNOWN
    status_code: int = 500
    suggestion: str = "Please try again later. If the problem persists, contact support."
    severity: ErrorSeverity = ErrorSeverity.MEDIUM

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_response(self) -> ErrorResponse:
        """Render this error as a structured response body."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            suggestion=self.suggestion,
            severity=self.severity,
        )


class InvalidInputError(FulfillmentError):
    """Malformed or missing input (HTTP 400)."""

    code = ErrorCode.ERR_VALIDATION
    status_code = 400
    suggestion = "Check the submitted fields and try again."
    severity = ErrorSeverity.LOW


class InvalidTransitionError(InvalidInputError):
    """Requested task status change is not allowed from the current state."""

    code = ErrorCode.ERR_INVALID_STATE_TRANSITION
    suggestion = "Check the task status and try again."


class NotAuthorizedError(FulfillmentError):
    """Caller lacks the role or ownership required (HTTP 401/403)."""

    code = ErrorCode.ERR_PERMISSION_DENIED
    status_code = 403
    suggestion = "Contact an administrator if you think this is an error."

    def __init__(self, message: str, *, code: str | None = None, authenticated: bool = True) -> None:
        super().__init__(message, code=code)
        if not authenticated:
            self.status_code = 401
            self.code = ErrorCode.ERR_AUTHENTICATION_REQUIRED
            self.suggestion = "Sign in and try again."


class NotFoundError(FulfillmentError):
    """Order, task or user is absent (HTTP 404)."""

    code = ErrorCode.ERR_ORDER_NOT_FOUND
    status_code = 404
    suggestion = "Refresh your task list; the item may have been removed or reassigned."
    severity = ErrorSeverity.LOW


class ConflictError(FulfillmentError):
    """A conditional write matched nothing because another writer changed the state first."""

    code = ErrorCode.ERR_STALE_STATE
    status_code = 409
    suggestion = "Refresh and retry."
    severity = ErrorSeverity.LOW


class UpstreamFailureError(FulfillmentError):
    """Blob storage or payment gateway failure (HTTP 502). Safe for the client to retry."""

    code = ErrorCode.ERR_UPSTREAM_FAILURE
    status_code = 502
    suggestion = "Please try again in a moment."
    severity = ErrorSeverity.HIGH


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify any exception into a structured response with recovery suggestions.

    Args:
        exception: The exception raised while handling a request

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, FulfillmentError):
        return exception.to_response()

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
