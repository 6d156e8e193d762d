"""Unit tests for the lock manager."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from ridecoord.adapters.store.in_memory import InMemoryStore
from ridecoord.core.errors import LockConflictError, StoreUnavailableError
from ridecoord.services.lock_manager import LockManager, lock_key


def _unavailable() -> StoreUnavailableError:
    return StoreUnavailableError(code="store_unavailable", message="down")


@pytest.fixture
def locks(store: InMemoryStore) -> LockManager:
    return LockManager(store, default_ttl_seconds=10)


def test_lock_key_format() -> None:
    assert lock_key("checkoutLock", "user-1") == "checkoutLock:user-1"
    assert lock_key("checkoutLock", 42) == "checkoutLock:42"


def test_rejects_non_positive_default_ttl(store: InMemoryStore) -> None:
    with pytest.raises(ValueError):
        LockManager(store, default_ttl_seconds=0)


@pytest.mark.asyncio
async def test_concurrent_acquires_grant_exactly_one(locks: LockManager) -> None:
    key = lock_key("paymentSuccess", "u1")

    tokens = await asyncio.gather(*(locks.acquire(key) for _ in range(25)))

    granted = [t for t in tokens if t is not None]
    assert len(granted) == 1
    assert await locks.is_held(key) is True


@pytest.mark.asyncio
async def test_released_lock_can_be_reacquired(locks: LockManager) -> None:
    key = lock_key("signoutLock", "u1")
    token = await locks.acquire(key)

    assert await locks.acquire(key) is None
    assert await locks.release(key, token) is True
    assert await locks.acquire(key) is not None


@pytest.mark.asyncio
async def test_lock_expires_without_release(locks: LockManager, fake_time) -> None:
    key = lock_key("checkoutLock", "u1")
    assert await locks.acquire(key, ttl_seconds=10) is not None

    fake_time.advance(9)
    assert await locks.acquire(key) is None

    fake_time.advance(1)
    assert await locks.acquire(key) is not None


@pytest.mark.asyncio
async def test_release_of_unheld_lock_is_noop(locks: LockManager) -> None:
    assert await locks.release(lock_key("checkoutLock", "nobody"), "whatever") is False


@pytest.mark.asyncio
async def test_stale_holder_cannot_release_new_holder(locks: LockManager, fake_time) -> None:
    key = lock_key("checkoutLock", "u1")
    stale = await locks.acquire(key, ttl_seconds=5)
    fake_time.advance(5)
    current = await locks.acquire(key, ttl_seconds=5)

    assert current is not None and current != stale
    assert await locks.release(key, stale) is False
    assert await locks.is_held(key) is True


@pytest.mark.asyncio
async def test_hold_releases_on_success_and_error(locks: LockManager) -> None:
    key = lock_key("checkoutLock", "u1")

    async with locks.hold(key):
        assert await locks.is_held(key) is True
    assert await locks.is_held(key) is False

    with pytest.raises(RuntimeError):
        async with locks.hold(key):
            raise RuntimeError("mutation failed")
    assert await locks.is_held(key) is False


@pytest.mark.asyncio
async def test_hold_raises_conflict_when_held(locks: LockManager) -> None:
    key = lock_key("checkoutLock", "u1")
    await locks.acquire(key)

    with pytest.raises(LockConflictError) as exc_info:
        async with locks.hold(key):
            pass  # pragma: no cover

    assert exc_info.value.code == "resource_locked"
    assert exc_info.value.details == {"resource": "checkoutLock"}


@pytest.mark.asyncio
async def test_acquire_fails_closed_when_store_down() -> None:
    store = AsyncMock()
    store.set.side_effect = _unavailable()
    locks = LockManager(store)

    with pytest.raises(StoreUnavailableError):
        await locks.acquire("checkoutLock:u1")


@pytest.mark.asyncio
async def test_release_swallows_store_failure() -> None:
    store = AsyncMock()
    store.compare_and_delete.side_effect = _unavailable()
    locks = LockManager(store)

    assert await locks.release("checkoutLock:u1", "tok") is False
