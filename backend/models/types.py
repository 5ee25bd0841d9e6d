"""Shared type definitions for type checking.

Uses NewType for IDs to provide compile-time type safety - prevents mixing
a subscription ID with a transport message ID.

Channel and Frequency are closed sets, so they are string enums: they compare
equal to their wire values and serialize as plain strings.
"""

from enum import Enum
from typing import Literal, NewType, TypeAlias

SubscriptionID = NewType("SubscriptionID", str)
TransportMessageID = NewType("TransportMessageID", str)


class Channel(str, Enum):
    """Delivery medium with its own queue, recipient field and consumer."""

    EMAIL = "email"
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"


class Frequency(str, Enum):
    """Notification tier with its own cron schedule and subscriber set."""

    HOURLY = "hourly"
    DAILY = "daily"


class DeliveryStatus(str, Enum):
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


Priority: TypeAlias = Literal["normal", "high"]
EpochMillis: TypeAlias = int
DateString: TypeAlias = str  # ISO 8601 format
