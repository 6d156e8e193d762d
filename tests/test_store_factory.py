"""Tests for store backend selection."""

import pytest

from ridecoord.adapters.store import InMemoryStore, RedisStore, create_store
from ridecoord.core.config import StoreSettings
from ridecoord.core.errors import ValidationAppError


def test_memory_backend() -> None:
    assert isinstance(create_store(StoreSettings(backend="memory")), InMemoryStore)


def test_redis_backend_builds_without_connecting() -> None:
    store = create_store(StoreSettings(backend="REDIS", redis_url="redis://localhost:6379/0"))
    assert isinstance(store, RedisStore)


def test_redis_backend_requires_url() -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        create_store(StoreSettings(backend="redis", redis_url=""))
    assert exc_info.value.code == "store_missing_url"


def test_unknown_backend_rejected() -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        create_store(StoreSettings(backend="memcached"))
    assert exc_info.value.code == "store_unknown_backend"
    assert "memcached" in exc_info.value.message
