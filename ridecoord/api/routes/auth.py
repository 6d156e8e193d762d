from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ridecoord.core.auth import get_bearer_token, get_current_user
from ridecoord.core.container import get_token_store
from ridecoord.core.lock import LockGuard
from ridecoord.core.rate_limit import RateLimitGuard, RateLimitTicket
from ridecoord.schemas.auth import SessionResponse, SignoutResponse
from ridecoord.services.token_revocation import TokenClaims, TokenRevocationStore

router = APIRouter(prefix="/auth", tags=["Auth"])

session_limit = RateLimitGuard.for_action("session")
signout_limit = RateLimitGuard.for_action("signout")


@router.get(
    "/session",
    response_model=SessionResponse,
    responses={
        401: {"description": "Missing, invalid, expired or revoked token"},
        429: {"description": "Too many failed attempts"},
    },
)
async def get_session(
    ticket: Annotated[RateLimitTicket, Depends(session_limit)],
    user: Annotated[TokenClaims, Depends(get_current_user)],
) -> SessionResponse:
    """Return the session behind the bearer token.

    Rejected tokens count as failed attempts for the caller's address.
    """

    await ticket.succeeded()
    return SessionResponse(user_id=user.subject, email=user.email, expires_at=user.expires_at)


@router.post(
    "/signout",
    response_model=SignoutResponse,
    dependencies=[Depends(signout_limit), Depends(LockGuard("signoutLock"))],
    responses={
        401: {"description": "Missing, invalid, expired or revoked token"},
        409: {"description": "A sign-out for this user is already in progress"},
        429: {"description": "Too many failed attempts"},
        503: {"description": "Shared store unavailable"},
    },
)
async def signout(
    ticket: Annotated[RateLimitTicket, Depends(signout_limit)],
    user: Annotated[TokenClaims, Depends(get_current_user)],
    token: Annotated[str, Depends(get_bearer_token)],
    tokens: Annotated[TokenRevocationStore, Depends(get_token_store)],
    all_sessions: Annotated[bool, Query(description="Revoke every session of the user")] = False,
) -> SignoutResponse:
    """Revoke the presented token, or every session of the user."""

    await tokens.invalidate(token)
    revoked = 1
    if all_sessions:
        revoked += await tokens.invalidate_all(user.subject)

    await ticket.succeeded()
    return SignoutResponse(sessions_revoked=revoked)
