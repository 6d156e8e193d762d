"""In-memory key-value store honouring the atomic store contract.

Notes:
- Per-process only: running multiple workers gives each its own state, so
  locks and counters are not shared. Use the Redis backend there.
- Thread-safe: every operation runs under one lock, which also makes each
  call atomic with respect to concurrently scheduled coroutines.
- Expiry is lazy: expired entries are dropped when touched.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from ridecoord.adapters.store.base import AbstractStore


@dataclass
class _Entry:
    value: str | set[str]
    expires_at: float | None = None


@dataclass
class _Stats:
    writes: int = 0
    rejected_writes: int = 0
    expirations: int = 0


class InMemoryStore(AbstractStore):
    """Dictionary-backed store with per-key expiry.

    Used as the single-process backend and as the test fake: the conditional
    write is evaluated and applied under one lock, so exactly one of any
    number of concurrent ``only_if_absent`` writers succeeds.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._data: dict[str, _Entry] = {}
        self._stats = _Stats()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryStore(size={len(self._data)})"

    def _live_entry_locked(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            self._stats.expirations += 1
            return None
        return entry

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        if ttl_seconds is None:
            return None
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")
        return self._clock() + ttl_seconds

    async def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        with self._lock:
            if only_if_absent and self._live_entry_locked(key) is not None:
                self._stats.rejected_writes += 1
                return False
            self._data[key] = _Entry(value=value, expires_at=self._expiry(ttl_seconds))
            self._stats.writes += 1
            return True

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None or isinstance(entry.value, set):
                return None
            return entry.value

    async def delete(self, key: str) -> int:
        with self._lock:
            if self._live_entry_locked(key) is None:
                return 0
            del self._data[key]
            return 1

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live_entry_locked(key) is not None

    async def incr(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                self._data[key] = _Entry(value="1")
                return 1
            if isinstance(entry.value, set):
                raise TypeError(f"key {key!r} holds a set, not a counter")
            count = int(entry.value) + 1
            # INCR keeps the existing expiry
            entry.value = str(count)
            return count

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return False
            entry.expires_at = self._expiry(ttl_seconds)
            return True

    async def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return -2
            if entry.expires_at is None:
                return -1
            return max(1, math.ceil(entry.expires_at - self._clock()))

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None or entry.value != expected:
                return False
            del self._data[key]
            return True

    def _set_entry_locked(self, key: str, *, create: bool) -> set[str] | None:
        entry = self._live_entry_locked(key)
        if entry is None:
            if not create:
                return None
            entry = _Entry(value=set())
            self._data[key] = entry
        if not isinstance(entry.value, set):
            raise TypeError(f"key {key!r} does not hold a set")
        return entry.value

    async def sadd(self, key: str, member: str) -> int:
        with self._lock:
            members = self._set_entry_locked(key, create=True)
            if member in members:
                return 0
            members.add(member)
            return 1

    async def srem(self, key: str, member: str) -> int:
        with self._lock:
            members = self._set_entry_locked(key, create=False)
            if not members or member not in members:
                return 0
            members.discard(member)
            if not members:
                # Redis drops empty sets
                del self._data[key]
            return 1

    async def sismember(self, key: str, member: str) -> bool:
        with self._lock:
            members = self._set_entry_locked(key, create=False)
            return bool(members) and member in members

    async def smembers(self, key: str) -> set[str]:
        with self._lock:
            members = self._set_entry_locked(key, create=False)
            return set(members) if members else set()

    def clear(self) -> None:
        """Remove all keys and reset counters."""

        with self._lock:
            self._data.clear()
            self._stats = _Stats()

    def stats(self) -> dict[str, int]:
        """Return lightweight store metrics without exposing values."""

        with self._lock:
            return {
                "keys": len(self._data),
                "writes": self._stats.writes,
                "rejected_writes": self._stats.rejected_writes,
                "expirations": self._stats.expirations,
            }
