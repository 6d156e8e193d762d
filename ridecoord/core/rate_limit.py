"""Failed-attempt rate limiting dependency for FastAPI routes.

This module wires the rate limiter service into the HTTP layer.

Flow per guarded request:
- Preflight: if either identity is blocked, reject with 429 and Retry-After.
- A ``RateLimitTicket`` is attached to ``request.state.rate_limit_ticket``.
  The handler reports ``succeeded()``; client-fault errors are reported as
  ``failed()`` by the global exception handler.

Identities:
- coarse: client address
- fine: principal (the bearer token subject when present) + client address
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from fastapi import Request

from ridecoord.core.auth import parse_bearer
from ridecoord.core.config import settings
from ridecoord.core.container import get_rate_limiter, get_token_store
from ridecoord.core.errors import AuthenticationAppError, RateLimitedError
from ridecoord.services.rate_limiter import (
    Identities,
    RateLimitDecision,
    RateLimiter,
    RateLimitPolicy,
    identities_for,
    policy_from_settings,
)

logger = logging.getLogger(__name__)

TICKET_ATTR = "rate_limit_ticket"

PrincipalResolver = Callable[[Request], "str | None"]


@dataclass
class RateLimitTicket:
    """Outcome reporter for one guarded request.

    Only the first report counts; later calls are no-ops. A ticket without a
    limiter (limiting disabled) accepts reports and does nothing.
    """

    limiter: RateLimiter | None
    identities: Identities
    reported: bool = False

    async def failed(self) -> RateLimitDecision:
        if self.limiter is None or self.reported:
            return RateLimitDecision(blocked=False)
        self.reported = True
        return await self.limiter.on_failure(self.identities)

    async def succeeded(self) -> None:
        if self.limiter is None or self.reported:
            return
        self.reported = True
        await self.limiter.on_success(self.identities)


def get_ticket(request: Request) -> RateLimitTicket | None:
    """Return the ticket attached by a ``RateLimitGuard``, if any."""
    return getattr(request.state, TICKET_ATTR, None)


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def bearer_subject(request: Request) -> str | None:
    """Principal taken from a validly signed bearer token, if present.

    Only the signature is checked here; full authentication happens in the
    route's own dependencies.
    """
    token = parse_bearer(request.headers.get("authorization"))
    if token is None:
        return None
    try:
        return get_token_store().decode(token).subject
    except AuthenticationAppError:
        return None


def blocked_error(decision: RateLimitDecision, action: str) -> RateLimitedError:
    return RateLimitedError(
        code="rate_limited",
        message="Too many failed attempts. Try again later.",
        details={
            "retry_after": decision.retry_after_seconds,
            "scope": decision.scope.value if decision.scope else "store",
            "context": {"action": action},
        },
        retry_after_seconds=decision.retry_after_seconds,
    )


class RateLimitGuard:
    """FastAPI dependency guarding one action.

    Usage:
        signout_limit = RateLimitGuard.for_action("signout", max_attempts_fine=3)

        @router.post("/signout", dependencies=[Depends(signout_limit)])
        async def signout(request: Request): ...
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        *,
        principal_of: PrincipalResolver = bearer_subject,
    ) -> None:
        self.policy = policy
        self._principal_of = principal_of

    @classmethod
    def for_action(
        cls,
        action: str,
        *,
        principal_of: PrincipalResolver = bearer_subject,
        **overrides: int,
    ) -> RateLimitGuard:
        return cls(policy_from_settings(action, **overrides), principal_of=principal_of)

    async def __call__(self, request: Request) -> RateLimitTicket:
        identities = identities_for(client_address(request), self._principal_of(request))

        if not settings.rate_limit.enabled:
            ticket = RateLimitTicket(limiter=None, identities=identities)
            setattr(request.state, TICKET_ATTR, ticket)
            return ticket

        limiter = get_rate_limiter(self.policy)
        decision = await limiter.preflight(identities)
        if decision.blocked:
            raise blocked_error(decision, self.policy.action)

        ticket = RateLimitTicket(limiter=limiter, identities=identities)
        setattr(request.state, TICKET_ATTR, ticket)
        return ticket
