"""Key-value store interface.

Every coordination primitive depends on this abstraction (not a concrete
client) so the Redis backend and the in-memory fake are interchangeable.
The only ordering guarantee relied upon is atomicity of single-key
operations, above all "set if absent, with expiry".
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AbstractStore(ABC):
    """Interface for the shared atomic key-value capability.

    Implementations must translate backend connectivity failures into
    ``StoreUnavailableError`` so callers can apply their own posture.
    """

    @abstractmethod
    async def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        """Atomically write a value (``SET key value [NX] [EX ttl]``).

        Args:
            key: Store key.
            value: String value.
            ttl_seconds: Optional expiry in seconds.
            only_if_absent: Write only when the key does not exist.

        Returns:
            True if the value was written, False if NX prevented the write.
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value for key, or None when absent/expired."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> int:
        """Delete key. Returns the number of keys removed (0 or 1)."""
        raise NotImplementedError

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return True when key holds a live value."""
        raise NotImplementedError

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment an integer counter, creating it at 1."""
        raise NotImplementedError

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Set a TTL on an existing key. Returns False if the key is absent."""
        raise NotImplementedError

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining lifetime in seconds.

        Returns:
            Seconds left, -1 when the key has no expiry, -2 when absent.
        """
        raise NotImplementedError

    @abstractmethod
    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """Atomically delete key only if it currently holds ``expected``.

        Returns:
            True if the key was deleted.
        """
        raise NotImplementedError

    @abstractmethod
    async def sadd(self, key: str, member: str) -> int:
        """Add member to a set. Returns 1 if newly added."""
        raise NotImplementedError

    @abstractmethod
    async def srem(self, key: str, member: str) -> int:
        """Remove member from a set. Returns 1 if it was present."""
        raise NotImplementedError

    @abstractmethod
    async def sismember(self, key: str, member: str) -> bool:
        """Return True when member belongs to the set."""
        raise NotImplementedError

    @abstractmethod
    async def smembers(self, key: str) -> set[str]:
        """Return all members of a set (empty when absent)."""
        raise NotImplementedError

    async def ping(self) -> bool:
        """Check backend reachability."""
        return True

    async def close(self) -> None:
        """Release backend resources."""
        return None
