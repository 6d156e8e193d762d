"""Bearer token authentication.

Design principles:
- Dependency Injection: used via FastAPI Depends() for loose coupling
- Pure parsing kept separate from the store-backed verification for testing
- Failures raise ``AuthenticationAppError`` and are rendered as 401 by the
  global exception handler
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, Header, Request

from ridecoord.core.container import get_token_store
from ridecoord.core.errors import AuthenticationAppError
from ridecoord.services.token_revocation import TokenClaims, TokenRevocationStore

logger = logging.getLogger(__name__)


def parse_bearer(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header.

    Examples:
        >>> parse_bearer("Bearer abc.def.ghi")
        'abc.def.ghi'
        >>> parse_bearer("bearer  abc ")
        'abc'
        >>> parse_bearer("Basic xyz") is None
        True
        >>> parse_bearer(None) is None
        True
    """
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_bearer_token(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """FastAPI dependency returning the raw bearer token.

    Raises:
        AuthenticationAppError: If the header is missing or malformed.
    """
    token = parse_bearer(authorization)
    if token is None:
        logger.warning("auth.missing_token", extra={"header_present": authorization is not None})
        raise AuthenticationAppError(
            code="missing_token",
            message="Missing bearer token. Provide an Authorization header.",
        )
    return token


async def get_current_user(
    request: Request,
    token: Annotated[str, Depends(get_bearer_token)],
    tokens: Annotated[TokenRevocationStore, Depends(get_token_store)],
) -> TokenClaims:
    """FastAPI dependency resolving the authenticated user.

    Usage:
        @router.get("/me")
        async def me(user: Annotated[TokenClaims, Depends(get_current_user)]):
            return {"id": user.subject}

    The verified claims are also stored on ``request.state.user``.

    Raises:
        AuthenticationAppError: Invalid, expired, revoked or unknown token.
    """
    claims = await tokens.authenticate(token)
    request.state.user = claims
    logger.info("auth.success", extra={"subject": claims.subject})
    return claims
