"""Factory for creating store instances from configuration."""

from ridecoord.adapters.store.base import AbstractStore
from ridecoord.adapters.store.in_memory import InMemoryStore
from ridecoord.adapters.store.redis_store import RedisStore
from ridecoord.core.config import StoreSettings, settings
from ridecoord.core.errors import ValidationAppError


def create_store(store_settings: StoreSettings | None = None) -> AbstractStore:
    """Factory function to instantiate the configured store backend.

    Reads configuration from ridecoord.core.config.settings (Pydantic Settings)
    unless explicit settings are passed.

    Returns:
        AbstractStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend is unknown or misconfigured.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryStore()

    if backend == "redis":
        if not cfg.redis_url:
            raise ValidationAppError(
                code="store_missing_url",
                message="Redis store backend requires STORE_REDIS_URL",
            )
        return RedisStore.from_url(
            cfg.redis_url,
            namespace=cfg.namespace,
            max_connections=cfg.max_connections,
            socket_timeout_seconds=cfg.socket_timeout_seconds,
        )

    raise ValidationAppError(
        code="store_unknown_backend",
        message=(
            f"Unknown store backend: '{backend}'. Supported backends: memory, redis"
        ),
    )
