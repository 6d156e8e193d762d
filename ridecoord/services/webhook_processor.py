"""Exactly-once-effect processing of at-least-once webhook deliveries.

Every event gets a marker key in the shared store that moves through
``absent -> pending -> done`` (or back to ``absent`` after a failure):

1. ``SET key pending NX EX ttl``: the single winner of any number of
   concurrent deliveries proceeds, everyone else is a duplicate.
2. The registered callback runs while holding the per-entity lock
   ``lock_prefix:entity`` so different events about the same entity do not
   interleave their mutations.
3. Success overwrites the marker with ``done`` (TTL re-applied).
4. Failure deletes the marker and raises ``ProcessingFailureError`` so the
   source redelivers and the next delivery starts over.
   Cancellation of the callback also deletes the marker and propagates.

Callbacks must therefore be safe to re-run from scratch after a partial
failure (upserts, not blind inserts).

A duplicate is not an error: it is acknowledged so the source stops
retrying. Markers are deduplicated within the marker TTL (24h by default);
a redelivery later than that is processed again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Mapping

from ridecoord.adapters.store.base import AbstractStore
from ridecoord.core.errors import AppError, ProcessingFailureError
from ridecoord.schemas.webhooks import WebhookEvent
from ridecoord.services.lock_manager import LockManager, lock_key

logger = logging.getLogger(__name__)

PENDING = "pending"
DONE = "done"


class IngestStatus(str, Enum):
    """Outcome of one delivery."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass(frozen=True)
class IngestResult:
    event_id: str
    status: IngestStatus


EventCallback = Callable[[WebhookEvent], Awaitable[None]]
EntityResolver = Callable[[WebhookEvent], "str | None"]


def _object_entity(event: WebhookEvent) -> str | None:
    return event.object_id


@dataclass(frozen=True)
class EventHandler:
    """Mutation callback registered for one event type.

    Attributes:
        callback: Coroutine applying the event's side effects. It may be
            invoked again from scratch after a failure, so it must be
            idempotent.
        lock_prefix: Lock key prefix, e.g. ``checkoutCompleted``.
        entity_of: Resolves the entity to lock on (user or customer id).
            Returning None runs the callback without a lock.
        lock_ttl_seconds: Lock lifetime; None uses the processor default.
    """

    callback: EventCallback
    lock_prefix: str
    entity_of: EntityResolver = _object_entity
    lock_ttl_seconds: int | None = None


class HandlerRegistry(Mapping[str, EventHandler]):
    """Event-type to handler mapping supplied by the application."""

    def __init__(self, handlers: Mapping[str, EventHandler] | None = None) -> None:
        self._handlers: dict[str, EventHandler] = dict(handlers or {})

    def __getitem__(self, event_type: str) -> EventHandler:
        return self._handlers[event_type]

    def __iter__(self):
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def register(
        self,
        event_type: str,
        lock_prefix: str,
        *,
        entity_of: EntityResolver = _object_entity,
        lock_ttl_seconds: int | None = None,
    ) -> Callable[[EventCallback], EventCallback]:
        """Decorator registering a callback for ``event_type``.

        Usage:
            @registry.register("checkout.session.completed", "checkoutCompleted")
            async def on_checkout(event): ...
        """

        def decorator(callback: EventCallback) -> EventCallback:
            self._handlers[event_type] = EventHandler(
                callback=callback,
                lock_prefix=lock_prefix,
                entity_of=entity_of,
                lock_ttl_seconds=lock_ttl_seconds,
            )
            return callback

        return decorator


class WebhookProcessor:
    """Deduplicating webhook ingestion on top of the store and lock manager."""

    def __init__(
        self,
        store: AbstractStore,
        locks: LockManager,
        *,
        event_ttl_seconds: int = 24 * 60 * 60,
        lock_ttl_seconds: int | None = None,
        key_prefix: str = "stripe",
    ) -> None:
        self._store = store
        self._locks = locks
        self._ttl = event_ttl_seconds
        self._lock_ttl = lock_ttl_seconds
        self._prefix = key_prefix

    def idempotency_key(self, event: WebhookEvent) -> str:
        """Marker key identifying one logical event.

        Examples:
            >>> processor.idempotency_key(event)  # doctest: +SKIP
            'stripe:event:evt_1:invoice.paid:in_9'
        """
        return f"{self._prefix}:event:{event.id}:{event.type}:{event.object_id}"

    async def marker_state(self, event: WebhookEvent) -> str | None:
        """Return ``pending``, ``done`` or None when the event is unknown."""
        return await self._store.get(self.idempotency_key(event))

    async def ingest(
        self,
        event: WebhookEvent,
        handlers: Mapping[str, EventHandler],
    ) -> IngestResult:
        """Process one delivery at most once per marker lifetime.

        Args:
            event: Parsed provider event.
            handlers: Event-type to handler mapping.

        Returns:
            IngestResult: PROCESSED, DUPLICATE or IGNORED.

        Raises:
            ProcessingFailureError: The callback failed; the marker was removed.
            StoreUnavailableError: The marker could not be written.
        """
        key = self.idempotency_key(event)
        log_extra = {"event_id": event.id, "event_type": event.type}

        claimed = await self._store.set(
            key,
            PENDING,
            ttl_seconds=self._ttl,
            only_if_absent=True,
        )
        if not claimed:
            logger.info("webhook.duplicate", extra=log_extra)
            return IngestResult(event_id=event.id, status=IngestStatus.DUPLICATE)

        handler = handlers.get(event.type)
        if handler is None:
            logger.info("webhook.unhandled_type", extra=log_extra)
            await self._store.set(key, DONE, ttl_seconds=self._ttl)
            return IngestResult(event_id=event.id, status=IngestStatus.IGNORED)

        try:
            await self._run_handler(event, handler)
        except asyncio.CancelledError:
            # The callback did not complete
            await self._forget(key, log_extra)
            logger.warning("webhook.processing_cancelled", extra=log_extra)
            raise
        except Exception as exc:
            await self._forget(key, log_extra)
            logger.error(
                "webhook.processing_failed",
                extra={
                    **log_extra,
                    "error_type": type(exc).__name__,
                    "error_code": exc.code if isinstance(exc, AppError) else None,
                },
            )
            raise ProcessingFailureError(
                code="webhook_processing_failed",
                message="Failed to process a webhook event",
                details={"event_id": event.id, "event_type": event.type},
            ) from exc

        await self._store.set(key, DONE, ttl_seconds=self._ttl)
        logger.info("webhook.processed", extra=log_extra)
        return IngestResult(event_id=event.id, status=IngestStatus.PROCESSED)

    async def _run_handler(self, event: WebhookEvent, handler: EventHandler) -> None:
        entity = handler.entity_of(event)
        if entity is None:
            await handler.callback(event)
            return

        resource = lock_key(handler.lock_prefix, entity)
        logger.debug(
            "webhook.entity_lock",
            extra={"event_id": event.id, "resource": resource},
        )
        async with self._locks.hold(resource, handler.lock_ttl_seconds or self._lock_ttl):
            await handler.callback(event)

    async def _forget(self, key: str, log_extra: dict[str, str]) -> None:
        try:
            await self._store.delete(key)
        except AppError as exc:
            # The pending marker expires on its own; redelivery is delayed until then
            logger.error(
                "webhook.marker_cleanup_failed",
                extra={**log_extra, "error_code": exc.code},
            )
