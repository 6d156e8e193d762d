"""Pydantic schemas for payment webhook ingestion."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from ridecoord.core.errors import ValidationAppError


class WebhookEvent(BaseModel):
    """A provider event notification, reduced to what ingestion needs.

    Delivery is at-least-once: the same ``id`` may arrive any number of
    times, possibly concurrently.
    """

    id: str = Field(..., min_length=1, description="Provider event id.")
    type: str = Field(..., min_length=1, description="Event type, e.g. 'invoice.payment_succeeded'.")
    object_id: str = Field(..., min_length=1, description="Id of the object the event is about.")
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="The event's object payload.",
    )
    created: int | None = Field(
        None,
        description="UNIX timestamp the provider created the event at.",
    )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> WebhookEvent:
        """Build an event from the provider envelope.

        Expected shape: ``{"id", "type", "created", "data": {"object": {"id", ...}}}``.

        Raises:
            ValidationAppError: If the envelope is malformed.
        """
        data = payload.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            raise ValidationAppError(
                code="webhook_malformed",
                message="Webhook payload has no event object",
            )

        try:
            return cls(
                id=payload.get("id") or "",
                type=payload.get("type") or "",
                object_id=str(obj.get("id") or ""),
                data=obj,
                created=payload.get("created"),
            )
        except ValidationError as exc:
            raise ValidationAppError(
                code="webhook_malformed",
                message="Webhook payload is missing required fields",
                details={"context": {"fields": [".".join(map(str, e["loc"])) for e in exc.errors()]}},
            ) from exc


class WebhookAck(BaseModel):
    """Response body acknowledging a delivery."""

    event_id: str
    received: bool = True
    status: Literal["processed", "duplicate", "ignored"]
