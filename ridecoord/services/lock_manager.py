"""Per-resource mutual exclusion on top of the shared store.

A lock is a single key written with "set if absent, with expiry". Its value
is a random fencing token minted per acquisition, so a release only deletes
the record the caller actually owns: a holder whose lock expired and was
re-acquired by someone else cannot free the new holder's lock.

Failure posture (fail closed):
- Acquire never blocks or retries; a held key is reported as a conflict.
- A store outage during acquire propagates ``StoreUnavailableError`` and the
  caller is denied.
- Release never raises: failures are logged and the TTL frees the key.
"""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ridecoord.adapters.store.base import AbstractStore
from ridecoord.core.errors import LockConflictError, StoreUnavailableError

logger = logging.getLogger(__name__)


def lock_key(prefix: str, subject_id: str | int) -> str:
    """Compose the resource key for an action+subject pair.

    Examples:
        >>> lock_key("checkoutLock", "user-1")
        'checkoutLock:user-1'
    """
    return f"{prefix}:{subject_id}"


def mint_fencing_token() -> str:
    """Return a unique, unguessable lock ownership token."""
    return secrets.token_hex(16)


class LockManager:
    """Fail-fast distributed lock manager.

    Guarantees at most one concurrent grant per resource key within the TTL
    horizon. TTLs must exceed the worst-case duration of the protected
    operation while staying short enough to bound unavailability after a
    crashed holder.
    """

    def __init__(self, store: AbstractStore, *, default_ttl_seconds: int = 10) -> None:
        if default_ttl_seconds < 1:
            raise ValueError("default_ttl_seconds must be >= 1")
        self._store = store
        self._default_ttl = default_ttl_seconds

    async def acquire(self, resource_key: str, ttl_seconds: int | None = None) -> str | None:
        """Try once to take the lock.

        Args:
            resource_key: Key identifying the protected action+subject.
            ttl_seconds: Lock lifetime; defaults to the manager default.

        Returns:
            The fencing token when granted, None when already held.

        Raises:
            StoreUnavailableError: The store could not be reached.
        """
        ttl = ttl_seconds or self._default_ttl
        token = mint_fencing_token()
        granted = await self._store.set(
            resource_key,
            token,
            ttl_seconds=ttl,
            only_if_absent=True,
        )
        if not granted:
            logger.info(
                "lock.conflict",
                extra={"resource": resource_key, "ttl_s": ttl},
            )
            return None

        logger.debug(
            "lock.acquired",
            extra={"resource": resource_key, "ttl_s": ttl},
        )
        return token

    async def release(self, resource_key: str, token: str) -> bool:
        """Release the lock if ``token`` still owns it.

        Idempotent: releasing an unheld or foreign lock is a no-op.

        Returns:
            True if this call deleted the lock record.
        """
        try:
            released = await self._store.compare_and_delete(resource_key, token)
        except StoreUnavailableError as exc:
            logger.warning(
                "lock.release_failed",
                extra={
                    "resource": resource_key,
                    "error_code": exc.code,
                },
            )
            return False

        if not released:
            logger.debug(
                "lock.release_skipped",
                extra={"resource": resource_key, "reason": "not_owner_or_expired"},
            )
        return released

    async def is_held(self, resource_key: str) -> bool:
        """Return True when a live lock record exists for the key."""
        return await self._store.exists(resource_key)

    @asynccontextmanager
    async def hold(
        self,
        resource_key: str,
        ttl_seconds: int | None = None,
    ) -> AsyncIterator[str]:
        """Hold the lock for the duration of a block.

        Usage:
            async with locks.hold(lock_key("paymentSuccess", user_id)):
                await mutate()

        Yields:
            The fencing token.

        Raises:
            LockConflictError: The resource is already held.
        """
        token = await self.acquire(resource_key, ttl_seconds)
        if token is None:
            raise LockConflictError(
                code="resource_locked",
                message="Another request is already in progress for this user and action",
                details={"resource": resource_key.split(":", 1)[0]},
            )
        try:
            yield token
        finally:
            await self.release(resource_key, token)
