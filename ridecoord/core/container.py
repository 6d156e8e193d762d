"""Process-wide coordination components for the HTTP layer.

Instances are cached in-module so state (connection pools, in-memory
counters) survives across requests. If the relevant configuration changes
(primarily in tests), the cached instances are rebuilt.
"""

from __future__ import annotations

import logging

from ridecoord.adapters.store.base import AbstractStore
from ridecoord.adapters.store.factory import create_store
from ridecoord.core.config import settings
from ridecoord.core.errors import ConfigurationError
from ridecoord.services.lock_manager import LockManager
from ridecoord.services.rate_limiter import RateLimitPolicy, RateLimiter
from ridecoord.services.token_revocation import TokenRevocationStore
from ridecoord.services.webhook_processor import HandlerRegistry, WebhookProcessor
from ridecoord.services.webhook_signature import HmacSignatureVerifier

logger = logging.getLogger(__name__)


_store: AbstractStore | None = None
_store_config: tuple | None = None
_rate_limiters: dict[RateLimitPolicy, RateLimiter] = {}

# Webhook handlers are registered here by the application at import time
handler_registry = HandlerRegistry()


def get_store() -> AbstractStore:
    """Return the shared store, creating it on first use."""

    global _store, _store_config

    config = (settings.store.backend, settings.store.redis_url, settings.store.namespace)
    if _store is None or _store_config != config:
        _store = create_store(settings.store)
        _store_config = config
        _rate_limiters.clear()
        logger.info("store.created", extra={"backend": settings.store.backend})
    return _store


def set_store(store: AbstractStore) -> None:
    """Install a specific store instance (tests, embedding applications)."""

    global _store, _store_config

    _store = store
    _store_config = (settings.store.backend, settings.store.redis_url, settings.store.namespace)
    _rate_limiters.clear()


async def close_store() -> None:
    """Close the shared store and forget it."""

    global _store, _store_config

    if _store is not None:
        await _store.close()
    _store = None
    _store_config = None
    _rate_limiters.clear()


def get_lock_manager() -> LockManager:
    return LockManager(get_store(), default_ttl_seconds=settings.lock.default_ttl_seconds)


def get_rate_limiter(policy: RateLimitPolicy) -> RateLimiter:
    """Return the limiter for one action policy."""

    store = get_store()
    limiter = _rate_limiters.get(policy)
    if limiter is None:
        limiter = RateLimiter(
            store,
            policy,
            fail_closed_retry_after_seconds=settings.rate_limit.fail_closed_retry_after_seconds,
        )
        _rate_limiters[policy] = limiter
    return limiter


def get_token_store() -> TokenRevocationStore:
    cfg = settings.token
    return TokenRevocationStore(
        get_store(),
        secret=cfg.secret,
        algorithm=cfg.algorithm,
        lifetime_seconds=cfg.lifetime_seconds,
        require_liveness=cfg.require_liveness,
    )


def get_webhook_processor() -> WebhookProcessor:
    return WebhookProcessor(
        get_store(),
        get_lock_manager(),
        event_ttl_seconds=settings.webhook.event_ttl_seconds,
        lock_ttl_seconds=settings.webhook.lock_ttl_seconds,
        key_prefix=settings.webhook.key_prefix,
    )


def get_handler_registry() -> HandlerRegistry:
    return handler_registry


def get_signature_verifier() -> HmacSignatureVerifier:
    """Build the webhook signature verifier.

    Raises:
        ConfigurationError: If no signing secret is configured.
    """

    secret = settings.webhook.signing_secret
    if not secret:
        logger.error("webhook.secret_not_configured")
        raise ConfigurationError(
            code="webhook_secret_not_configured",
            message="Webhook signing secret is not configured",
            details={"hint": "Set WEBHOOK_SIGNING_SECRET"},
        )
    return HmacSignatureVerifier(secret, tolerance_seconds=settings.webhook.tolerance_seconds)
