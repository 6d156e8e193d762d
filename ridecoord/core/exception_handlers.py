"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses → appropriate HTTP status (400, 401, 409, 429, 500, 503)
- Client-fault errors on a rate-limited route count as a failed attempt;
  when that attempt blocks the identity the response becomes 429
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ridecoord.core.config import settings
from ridecoord.core.errors import (
    AppError,
    AuthenticationAppError,
    ConfigurationError,
    LockConflictError,
    ProcessingFailureError,
    RateLimitedError,
    StoreUnavailableError,
)
from ridecoord.core.logging import get_request_id
from ridecoord.core.rate_limit import blocked_error, get_ticket

logger = logging.getLogger(__name__)

# Statuses that count as failed attempts for the caller
COUNTED_STATUSES = frozenset({400, 401, 403, 409, 422})


def status_for(exc: AppError) -> int:
    """Map a domain error to its HTTP status code.

    - ValidationAppError (and the base AppError) → 400 Bad Request
    - AuthenticationAppError → 401 Unauthorized
    - LockConflictError → 409 Conflict
    - RateLimitedError → 429 Too Many Requests
    - ProcessingFailureError, ConfigurationError → 500 Internal Server Error
    - StoreUnavailableError → 503 Service Unavailable
    """
    if isinstance(exc, AuthenticationAppError):
        return 401
    if isinstance(exc, LockConflictError):
        return 409
    if isinstance(exc, RateLimitedError):
        return 429
    if isinstance(exc, (ProcessingFailureError, ConfigurationError)):
        return 500
    if isinstance(exc, StoreUnavailableError):
        return 503
    return 400


async def _count_failure(request: Request, status_code: int) -> RateLimitedError | None:
    """Report a client-fault response to the route's rate limit ticket.

    Returns:
        A RateLimitedError when this failure blocked the caller.
    """
    ticket = get_ticket(request)
    if ticket is None or status_code not in COUNTED_STATUSES:
        return None

    try:
        decision = await ticket.failed()
    except StoreUnavailableError:
        # Original error response still goes out; the counter is lost
        logger.warning("rate_limit.failure_not_recorded", extra={"status_code": status_code})
        return None

    if decision.blocked and ticket.limiter is not None:
        return blocked_error(decision, ticket.limiter.policy.action)
    return None


def _error_response(exc: AppError, status_code: int) -> JSONResponse:
    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }

    # Include details only if present (optional structured context)
    if exc.details:
        error_content["details"] = exc.details

    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitedError) and settings.rate_limit.include_headers:
        headers["Retry-After"] = str(exc.retry_after_seconds)

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers or None,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = status_for(exc)

    blocked = await _count_failure(request, status_code)
    if blocked is not None:
        exc, status_code = blocked, 429

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    return _error_response(exc, status_code)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Count malformed requests against the rate limit, then respond as FastAPI does."""
    blocked = await _count_failure(request, 422)
    if blocked is not None:
        return _error_response(blocked, 429)
    return await request_validation_exception_handler(request, exc)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Catches any exception not handled by specific handlers.
    Logs detailed information for debugging while returning generic message.
    Prevents information leakage (no stack traces to client).

    Args:
        request: FastAPI request object.
        exc: Exception instance (unexpected).

    Returns:
        JSONResponse with generic error (no implementation details leaked).
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Must be called during app initialization, before route registration.
    Order matters: specific handlers registered before general fallback.

    Args:
        app: FastAPI application instance.

    Example:
        >>> from fastapi import FastAPI
        >>> from ridecoord.core.exception_handlers import setup_exception_handlers
        >>> app = FastAPI()
        >>> setup_exception_handlers(app)
        >>> # Now all errors are handled consistently
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(general_exception_handler)
