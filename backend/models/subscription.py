"""Pydantic model for the subscription rows the scheduler reads."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.types import Channel, Frequency, SubscriptionID


class Subscription(BaseModel):
    """Weather subscription with per-channel recipient identifiers."""

    model_config = ConfigDict(frozen=True)

    id: SubscriptionID
    email: str | None = None
    telegram_id: str | None = None
    whatsapp_phone: str | None = None
    city: str = Field(..., min_length=1)
    frequency: Frequency
    active: bool = True
    confirmed: bool = False

    @field_validator("id", "telegram_id", "whatsapp_phone", mode="before")
    @classmethod
    def _coerce_to_str(cls, value: Any) -> Any:
        # Supabase returns bigint ids and Telegram chat ids as numbers
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("city")
    @classmethod
    def _city_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("city must not be blank")
        return value

    @model_validator(mode="after")
    def _require_recipient(self) -> "Subscription":
        if not self.recipients():
            raise ValueError("subscription needs at least one recipient identifier")
        return self

    @property
    def is_eligible(self) -> bool:
        """Only active and confirmed subscriptions take part in a run."""
        return self.active and self.confirmed

    def recipients(self) -> dict[Channel, str]:
        """Non-empty recipient per channel, in channel order."""
        candidates = {
            Channel.EMAIL: self.email,
            Channel.TELEGRAM: self.telegram_id,
            Channel.WHATSAPP: self.whatsapp_phone,
        }
        return {
            channel: value.strip()
            for channel, value in candidates.items()
            if value and value.strip()
        }
