"""Pydantic models for delivery outcomes."""

from pydantic import BaseModel, ConfigDict, Field

from models.types import Channel, DeliveryStatus, SubscriptionID, TransportMessageID


class DeliveryReceipt(BaseModel):
    """What a transport reports back for a successful send."""

    model_config = ConfigDict(frozen=True)

    message_id: TransportMessageID | None = None
    response: str | None = None


class DeliveryLogEntry(BaseModel):
    """Audit record for one send attempt. Append-only."""

    model_config = ConfigDict(frozen=True)

    subscription_id: SubscriptionID
    status_code: DeliveryStatus
    channel: Channel
    recipient: str
    subject: str
    error_message: str | None = None
    message_id: TransportMessageID | None = None
    response: str | None = None
    attempt: int = Field(1, ge=1)


class OutboundContent(BaseModel):
    """Rendered notification ready for a channel transport."""

    model_config = ConfigDict(frozen=True)

    subject: str
    text: str
    html: str | None = None
