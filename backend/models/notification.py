"""Pydantic models for the notification wire message.

NotificationMessage is the contract between the scheduler and every channel
consumer. Adding optional fields is backward compatible (unknown fields are
ignored on parse); renaming or removing fields is a breaking change.
"""

import time
from typing import Any, Literal

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.subscription import Subscription
from models.types import (
    Channel,
    DateString,
    EpochMillis,
    Frequency,
    Priority,
    SubscriptionID,
)

MESSAGE_TYPE = "weather_notification"


class WeatherSnapshot(BaseModel):
    """Current weather for one city as returned by the weather lookup."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    temperature: int | float
    description: str
    timestamp: DateString
    # Reported by the lookup service, never sent on the wire
    city: str | None = Field(default=None, exclude=True)

    @field_validator("timestamp")
    @classmethod
    def _iso_timestamp(cls, value: str) -> str:
        try:
            date_parser.isoparse(value)
        except (ValueError, OverflowError) as e:
            raise ValueError(f"timestamp is not ISO-8601: {value!r}") from e
        return value


class NotificationData(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    subscription_id: SubscriptionID
    recipient: str = Field(..., min_length=1)
    city: str
    frequency: Frequency
    weather: WeatherSnapshot


class NotificationMessage(BaseModel):
    """One notification for one subscriber over one channel."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: Literal["weather_notification"] = MESSAGE_TYPE
    channel: Channel
    data: NotificationData
    timestamp: EpochMillis
    priority: Priority = "normal"

    @classmethod
    def build(
        cls,
        subscription: Subscription,
        channel: Channel,
        recipient: str,
        weather: WeatherSnapshot,
        sent_at_ms: EpochMillis | None = None,
    ) -> "NotificationMessage":
        return cls(
            channel=channel,
            data=NotificationData(
                subscription_id=subscription.id,
                recipient=recipient,
                city=subscription.city,
                frequency=subscription.frequency,
                weather=weather,
            ),
            timestamp=sent_at_ms if sent_at_ms is not None else int(time.time() * 1000),
            priority="normal",
        )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "NotificationMessage":
        return cls.model_validate(payload)

    def to_wire(self) -> bytes:
        """Serialize as UTF-8 JSON."""
        return self.model_dump_json().encode("utf-8")
