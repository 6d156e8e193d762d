"""Application-level exception types.

This module defines the coordination-layer error taxonomy used across
adapters, services and the HTTP boundary, enabling consistent error handling,
logging, and API responses.

Store-failure posture differs per component and is part of each contract:
- Locks and rate limiting fail closed (the request is denied).
- Token revocation and liveness checks fail open (the token stays usable).

A duplicate webhook delivery is not an error; it is reported as an ingest
outcome and acknowledged as success.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep the shape stable while allowing each error
    type to attach what it knows.
    """

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: int
    scope: str
    resource: str
    event_id: str
    event_type: str
    backend: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when a bearer token is missing, invalid, expired or revoked."""


class LockConflictError(AppError):
    """Raised when the protected resource is already held by another request.

    Surfaced immediately; this layer never retries an acquisition.
    """


@dataclass
class RateLimitedError(AppError):
    """Raised when an identity is blocked for a protected action.

    Attributes:
        retry_after_seconds: Seconds the client should wait before retrying.
    """

    retry_after_seconds: int = 1


class ProcessingFailureError(AppError):
    """Raised when a webhook mutation callback fails.

    Escalated as a server error so the event source redelivers the event.
    """


class StoreUnavailableError(AppError):
    """Raised when the shared key-value backend cannot be reached."""


class ConfigurationError(AppError):
    """Raised when the server is missing configuration a request depends on."""
