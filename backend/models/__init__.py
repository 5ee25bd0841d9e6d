"""Pydantic models for data validation and type checking."""

from models.delivery import DeliveryLogEntry, DeliveryReceipt, OutboundContent
from models.notification import (
    MESSAGE_TYPE,
    NotificationData,
    NotificationMessage,
    WeatherSnapshot,
)
from models.subscription import Subscription
from models.types import Channel, DeliveryStatus, Frequency

__all__ = [
    "MESSAGE_TYPE",
    "Channel",
    "DeliveryStatus",
    "Frequency",
    "Subscription",
    "WeatherSnapshot",
    "NotificationData",
    "NotificationMessage",
    "DeliveryReceipt",
    "DeliveryLogEntry",
    "OutboundContent",
]
