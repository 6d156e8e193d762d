"""Access token issuance and revocation.

Tokens are stateless signed JWTs, so revocation is tracked in the shared
store instead:
- ``revoked:{jti}`` is written on sign-out (or re-login) with a TTL equal to
  the token's remaining validity, floored at one second. Once the token
  would have expired anyway the marker is useless and disappears.
- ``live:{jti}`` is written at issuance with the token lifetime. Tokens
  without a liveness marker are rejected when ``require_liveness`` is on,
  which makes a store flush revoke everything instead of nothing.
- ``sessions:{subject}`` tracks the jti of each issued token so every
  session of a user can be revoked at once.

Failure posture (fail open): if the store is unreachable, revocation and
liveness lookups report the token as usable and log a warning. Signature
and expiry checks never depend on the store.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import jwt

from ridecoord.adapters.store.base import AbstractStore
from ridecoord.core.errors import AuthenticationAppError, StoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of an access token."""

    subject: str
    jti: str
    issued_at: int
    expires_at: int
    email: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TokenClaims:
        return cls(
            subject=str(payload["sub"]),
            jti=str(payload["jti"]),
            issued_at=int(payload.get("iat", 0)),
            expires_at=int(payload["exp"]),
            email=payload.get("email"),
        )


def _unauthenticated(message: str, code: str = "token_invalid") -> AuthenticationAppError:
    return AuthenticationAppError(code=code, message=message)


class TokenRevocationStore:
    """Issues, verifies and revokes bearer tokens."""

    def __init__(
        self,
        store: AbstractStore,
        *,
        secret: str,
        algorithm: str = "HS256",
        lifetime_seconds: int = 3600,
        require_liveness: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._secret = secret
        self._algorithm = algorithm
        self._lifetime = lifetime_seconds
        self._require_liveness = require_liveness
        self._clock = clock

    @staticmethod
    def _revoked_key(jti: str) -> str:
        return f"revoked:{jti}"

    @staticmethod
    def _live_key(jti: str) -> str:
        return f"live:{jti}"

    @staticmethod
    def _sessions_key(subject: str) -> str:
        return f"sessions:{subject}"

    def _remaining_seconds(self, expires_at: int) -> int:
        return max(1, math.ceil(expires_at - self._clock()))

    def decode(self, token: str) -> TokenClaims:
        """Verify the signature and read claims without checking expiry.

        Raises:
            AuthenticationAppError: The token is malformed or not ours.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["sub", "jti", "exp"],
                },
            )
        except jwt.PyJWTError as exc:
            logger.info("token.invalid", extra={"error_type": type(exc).__name__})
            raise _unauthenticated("Invalid access token") from exc
        return TokenClaims.from_payload(payload)

    async def issue(self, subject: str, email: str | None = None) -> str:
        """Sign a new token and register its liveness marker.

        Raises:
            StoreUnavailableError: The liveness marker could not be written.
        """
        now = int(self._clock())
        jti = uuid.uuid4().hex
        payload: dict[str, Any] = {
            "sub": str(subject),
            "jti": jti,
            "iat": now,
            "exp": now + self._lifetime,
        }
        if email:
            payload["email"] = email
        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)

        sessions = self._sessions_key(str(subject))
        await self._store.set(self._live_key(jti), str(payload["exp"]), ttl_seconds=self._lifetime)
        await self._store.sadd(sessions, jti)
        await self._store.expire(sessions, self._lifetime)

        logger.info(
            "token.issued",
            extra={"subject": str(subject), "ttl_s": self._lifetime},
        )
        return token

    async def invalidate(self, token: str) -> None:
        """Revoke a token until it would have expired anyway.

        Already-expired tokens still get a one second marker.

        Raises:
            AuthenticationAppError: The token signature is invalid.
            StoreUnavailableError: The revocation marker could not be written.
        """
        claims = self.decode(token)
        await self._revoke(claims.jti, claims.subject, claims.expires_at)

    async def _revoke(self, jti: str, subject: str, expires_at: int) -> None:
        ttl = self._remaining_seconds(expires_at)
        await self._store.set(self._revoked_key(jti), "1", ttl_seconds=ttl)
        await self._store.delete(self._live_key(jti))
        await self._store.srem(self._sessions_key(subject), jti)
        logger.info(
            "token.revoked",
            extra={"subject": subject, "jti": jti, "ttl_s": ttl},
        )

    async def invalidate_all(self, subject: str) -> int:
        """Revoke every tracked session of ``subject``.

        Returns:
            Number of sessions revoked.
        """
        subject = str(subject)
        revoked = 0
        for jti in await self._store.smembers(self._sessions_key(subject)):
            expires_at = await self._store.get(self._live_key(jti))
            if expires_at is None:
                # Expired or already revoked
                await self._store.srem(self._sessions_key(subject), jti)
                continue
            await self._revoke(jti, subject, int(expires_at))
            revoked += 1
        return revoked

    async def is_revoked(self, token: str) -> bool:
        """Return True when a revocation marker exists for the token.

        Fails open: a store error reports the token as not revoked.
        """
        return await self._is_revoked_jti(self.decode(token).jti)

    async def _is_revoked_jti(self, jti: str) -> bool:
        try:
            return await self._store.exists(self._revoked_key(jti))
        except StoreUnavailableError as exc:
            logger.warning(
                "token.revocation_check_failed_open",
                extra={"jti": jti, "error_code": exc.code},
            )
            return False

    async def is_live(self, claims: TokenClaims) -> bool:
        """Return True when the token's liveness marker exists.

        Fails open: a store error reports the token as live.
        """
        try:
            return await self._store.exists(self._live_key(claims.jti))
        except StoreUnavailableError as exc:
            logger.warning(
                "token.liveness_check_failed_open",
                extra={"jti": claims.jti, "error_code": exc.code},
            )
            return True

    async def authenticate(self, token: str) -> TokenClaims:
        """Fully verify a bearer token.

        Raises:
            AuthenticationAppError: Invalid, expired, revoked or unknown token.
        """
        claims = self.decode(token)
        if claims.expires_at <= self._clock():
            raise _unauthenticated("Access token has expired", code="token_expired")
        if await self._is_revoked_jti(claims.jti):
            logger.info("token.rejected", extra={"reason": "revoked", "jti": claims.jti})
            raise _unauthenticated("Token has been revoked", code="token_revoked")
        if self._require_liveness and not await self.is_live(claims):
            logger.info("token.rejected", extra={"reason": "not_live", "jti": claims.jti})
            raise _unauthenticated("Token is not recognised", code="token_unknown")
        return claims
