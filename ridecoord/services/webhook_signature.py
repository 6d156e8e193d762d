"""Webhook signature verification.

Provider-style scheme: the signature header carries
``t=<unix timestamp>,v1=<hex digest>[,v1=...]`` where each digest is
HMAC-SHA256 over ``"{t}.{raw body}"`` with the shared signing secret.
Deliveries older than the tolerance are rejected to limit replays.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Callable

from ridecoord.core.errors import ValidationAppError


def _invalid(message: str) -> ValidationAppError:
    return ValidationAppError(code="webhook_signature_invalid", message=message)


def sign_payload(secret: str, payload: bytes, timestamp: int) -> str:
    """Build a signature header value for ``payload``.

    Used by tests and local tooling to produce valid deliveries.
    """
    digest = hmac.new(
        secret.encode(),
        f"{timestamp}.".encode() + payload,
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={digest}"


class HmacSignatureVerifier:
    """Verifies signed webhook deliveries."""

    def __init__(
        self,
        secret: str,
        *,
        tolerance_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("secret must be non-empty")
        self._secret = secret
        self._tolerance = tolerance_seconds
        self._clock = clock

    def verify(self, payload: bytes, header: str | None) -> None:
        """Raise ``ValidationAppError`` unless ``header`` signs ``payload``."""
        if not header:
            raise _invalid("Missing webhook signature")

        timestamp: int | None = None
        signatures: list[str] = []
        for part in header.split(","):
            name, _, value = part.strip().partition("=")
            if name == "t":
                try:
                    timestamp = int(value)
                except ValueError:
                    raise _invalid("Malformed webhook signature timestamp") from None
            elif name == "v1" and value:
                signatures.append(value)

        if timestamp is None or not signatures:
            raise _invalid("Malformed webhook signature")

        if abs(self._clock() - timestamp) > self._tolerance:
            raise _invalid("Webhook signature timestamp outside tolerance")

        expected = sign_payload(self._secret, payload, timestamp).split("v1=", 1)[1]
        if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            raise _invalid("Webhook signature verification failed")
