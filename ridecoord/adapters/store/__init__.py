"""Store adapter layer - the shared atomic key-value capability.

Coordination primitives depend on ``AbstractStore`` only, so the process-local
in-memory store and the Redis store can be swapped through configuration.
"""

from ridecoord.adapters.store.base import AbstractStore
from ridecoord.adapters.store.factory import create_store
from ridecoord.adapters.store.in_memory import InMemoryStore
from ridecoord.adapters.store.redis_store import RedisStore

__all__ = [
    "AbstractStore",
    "InMemoryStore",
    "RedisStore",
    "create_store",
]
