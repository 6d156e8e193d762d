"""Per-user mutual exclusion dependency for FastAPI routes.

Locks ``{prefix}:{user id}`` for the duration of the request so the same
user cannot run the same action twice concurrently. A concurrent request is
rejected with 409 instead of waiting.
"""

from __future__ import annotations

from typing import Annotated, AsyncIterator

from fastapi import Depends

from ridecoord.core.auth import get_current_user
from ridecoord.core.container import get_lock_manager
from ridecoord.services.lock_manager import LockManager, lock_key
from ridecoord.services.token_revocation import TokenClaims


class LockGuard:
    """FastAPI yield dependency holding a per-user lock.

    Usage:
        @router.post("/checkout", dependencies=[Depends(LockGuard("checkoutLock"))])
        async def checkout(): ...

    Requires an authenticated user (401 otherwise). The lock is released on
    every exit path, including handler errors.
    """

    def __init__(self, prefix: str, ttl_seconds: int | None = None) -> None:
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    async def __call__(
        self,
        user: Annotated[TokenClaims, Depends(get_current_user)],
        locks: Annotated[LockManager, Depends(get_lock_manager)],
    ) -> AsyncIterator[str]:
        async with locks.hold(lock_key(self.prefix, user.subject), self.ttl_seconds) as token:
            yield token
