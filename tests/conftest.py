"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the environment to ``testing`` and provides a deterministic
clock so expiry behaviour is tested without sleeping.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

# Set default env vars that all tests might need
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("TOKEN_SECRET", "test-token-secret-0123456789abcdef")
os.environ.setdefault("WEBHOOK_SIGNING_SECRET", "whsec_test_secret")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

from ridecoord.adapters.store.in_memory import InMemoryStore  # noqa: E402
from ridecoord.core import container  # noqa: E402


class FakeTime:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def store(fake_time: FakeTime) -> InMemoryStore:
    """In-memory store driven by the fake clock."""
    return InMemoryStore(clock=fake_time.time)


@pytest.fixture
def app_store() -> InMemoryStore:
    """Fresh store installed in the application container for one test."""
    fresh = InMemoryStore()
    container.set_store(fresh)
    container.handler_registry._handlers.clear()
    yield fresh
    container.handler_registry._handlers.clear()
    container.set_store(InMemoryStore())
