"""Redis-backed key-value store.

Atomic across any number of workers: conditional writes use a single
``SET NX EX`` and fenced deletes use a Lua compare-and-delete script.
Keys are prefixed with the configured namespace to avoid collisions with
other applications sharing the instance.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable

import redis.asyncio as redis
from redis.exceptions import RedisError

from ridecoord.adapters.store.base import AbstractStore
from ridecoord.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


# Deletes KEYS[1] only while it still holds ARGV[1]
COMPARE_AND_DELETE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisStore(AbstractStore):
    """Asynchronous Redis implementation of the store contract."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        namespace: str = "ridecoord",
    ) -> None:
        """Initialize the store around an existing client.

        Args:
            client: ``redis.asyncio`` client created with ``decode_responses=True``.
            namespace: Prefix for every key.
        """
        self._client = client
        self._namespace = namespace

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        namespace: str = "ridecoord",
        max_connections: int = 50,
        socket_timeout_seconds: float = 2.0,
    ) -> RedisStore:
        """Build a store with its own connection pool.

        The pool connects lazily on the first command.
        """
        client = redis.from_url(
            url,
            max_connections=max_connections,
            socket_timeout=socket_timeout_seconds,
            socket_connect_timeout=socket_timeout_seconds,
            decode_responses=True,
        )
        return cls(client, namespace=namespace)

    def _make_key(self, key: str) -> str:
        """Add the namespace to a key."""
        return f"{self._namespace}:{key}"

    async def _run(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except RedisError as exc:
            logger.error(
                "store.unavailable",
                extra={
                    "operation": operation,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Shared store is unavailable",
                details={"backend": "redis", "context": {"operation": operation}},
            ) from exc

    async def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        result = await self._run(
            "set",
            self._client.set(
                self._make_key(key),
                value,
                ex=ttl_seconds,
                nx=only_if_absent,
            ),
        )
        # redis-py returns None when NX prevented the write
        return bool(result)

    async def get(self, key: str) -> str | None:
        return await self._run("get", self._client.get(self._make_key(key)))

    async def delete(self, key: str) -> int:
        return int(await self._run("delete", self._client.delete(self._make_key(key))))

    async def exists(self, key: str) -> bool:
        return await self._run("exists", self._client.exists(self._make_key(key))) > 0

    async def incr(self, key: str) -> int:
        return int(await self._run("incr", self._client.incr(self._make_key(key))))

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(
            await self._run("expire", self._client.expire(self._make_key(key), ttl_seconds))
        )

    async def ttl(self, key: str) -> int:
        return int(await self._run("ttl", self._client.ttl(self._make_key(key))))

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        result = await self._run(
            "compare_and_delete",
            self._client.eval(COMPARE_AND_DELETE_SCRIPT, 1, self._make_key(key), expected),
        )
        return bool(result)

    async def sadd(self, key: str, member: str) -> int:
        return int(await self._run("sadd", self._client.sadd(self._make_key(key), member)))

    async def srem(self, key: str, member: str) -> int:
        return int(await self._run("srem", self._client.srem(self._make_key(key), member)))

    async def sismember(self, key: str, member: str) -> bool:
        return bool(
            await self._run("sismember", self._client.sismember(self._make_key(key), member))
        )

    async def smembers(self, key: str) -> set[str]:
        members = await self._run("smembers", self._client.smembers(self._make_key(key)))
        return set(members or ())

    async def ping(self) -> bool:
        return bool(await self._run("ping", self._client.ping()))

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("store.closed", extra={"backend": "redis"})
