from __future__ import annotations

import json
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request

from ridecoord.core.container import (
    get_handler_registry,
    get_signature_verifier,
    get_webhook_processor,
)
from ridecoord.core.errors import ValidationAppError
from ridecoord.schemas.webhooks import WebhookAck, WebhookEvent
from ridecoord.services.webhook_processor import HandlerRegistry, WebhookProcessor
from ridecoord.services.webhook_signature import HmacSignatureVerifier

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post(
    "/payments",
    response_model=WebhookAck,
    responses={
        400: {"description": "Invalid signature or malformed payload"},
        500: {"description": "Processing failed; the provider should redeliver"},
        503: {"description": "Shared store unavailable"},
    },
)
async def receive_payment_event(
    request: Request,
    verifier: Annotated[HmacSignatureVerifier, Depends(get_signature_verifier)],
    processor: Annotated[WebhookProcessor, Depends(get_webhook_processor)],
    handlers: Annotated[HandlerRegistry, Depends(get_handler_registry)],
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> WebhookAck:
    """Ingest a payment provider event.

    The raw body is verified against the signature header, parsed and handed
    to the deduplicating processor. Redeliveries of an already processed
    event are acknowledged with ``status="duplicate"`` and have no effect.
    """

    raw_body = await request.body()
    verifier.verify(raw_body, stripe_signature)

    try:
        payload = json.loads(raw_body)
    except ValueError as exc:
        raise ValidationAppError(
            code="webhook_malformed",
            message="Webhook body is not valid JSON",
        ) from exc
    if not isinstance(payload, dict):
        raise ValidationAppError(code="webhook_malformed", message="Webhook body must be an object")

    event = WebhookEvent.from_payload(payload)
    result = await processor.ingest(event, handlers)
    return WebhookAck(event_id=result.event_id, status=result.status.value)
