"""
Channel senders used by the notification consumers.

Each sender turns a NotificationMessage into channel content (compose) and
hands it to the channel transport (deliver). deliver() either returns a
DeliveryReceipt or raises DeliveryError with the transport's error message.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod

import httpx
import resend

from models.delivery import DeliveryReceipt, OutboundContent
from models.notification import NotificationMessage
from models.types import Channel, TransportMessageID
from notifications.email_sender import (
    build_subject,
    build_weather_email,
    build_weather_text,
    send_weather_email,
)
from notifications.unsubscribe_tokens import build_manage_url
from shared.config import Settings
from shared.errors import ChannelNotSupportedError, ConfigurationError, DeliveryError
from shared.logger import setup_logger

logger = setup_logger("CHANNELS")


class ChannelSender(ABC):
    channel: Channel

    def compose(self, message: NotificationMessage) -> OutboundContent:
        return OutboundContent(
            subject=build_subject(message), text=build_weather_text(message)
        )

    @abstractmethod
    async def deliver(self, recipient: str, content: OutboundContent) -> DeliveryReceipt:
        ...

    async def aclose(self) -> None:
        return None


class EmailSender(ChannelSender):
    channel = Channel.EMAIL

    def __init__(
        self,
        api_key: str,
        from_email: str,
        sender_name: str | None = None,
        manage_base_url: str | None = None,
        secret_key: str | None = None,
    ):
        resend.api_key = api_key
        self.from_address = f"{sender_name} <{from_email}>" if sender_name else from_email
        self._manage_base_url = manage_base_url
        self._secret_key = secret_key

    def compose(self, message: NotificationMessage) -> OutboundContent:
        manage_url = build_manage_url(
            self._manage_base_url, message.data.subscription_id, self._secret_key
        )
        return build_weather_email(message, manage_url)

    async def deliver(self, recipient: str, content: OutboundContent) -> DeliveryReceipt:
        # The Resend SDK is blocking
        result = await asyncio.to_thread(
            send_weather_email, recipient, content, self.from_address
        )
        if not result["success"]:
            raise DeliveryError(result.get("error") or "Unknown error", channel=self.channel.value)

        return DeliveryReceipt(
            message_id=TransportMessageID(result["email_id"]) if result.get("email_id") else None,
            response="accepted",
        )


class TelegramSender(ChannelSender):
    """Telegram Bot API sendMessage. The recipient is the subscriber's chat id."""

    channel = Channel.TELEGRAM

    def __init__(
        self,
        bot_token: str | None,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def deliver(self, recipient: str, content: OutboundContent) -> DeliveryReceipt:
        if not self._bot_token:
            raise ChannelNotSupportedError(
                "Telegram delivery needs TELEGRAM_BOT_TOKEN", channel=self.channel.value
            )

        url = f"{self._api_base}/bot{self._bot_token}/sendMessage"
        try:
            response = await self._client.post(
                url, json={"chat_id": recipient, "text": content.text}
            )
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DeliveryError(f"Telegram request failed: {e}", channel=self.channel.value) from e

        if not body.get("ok"):
            description = body.get("description") or f"HTTP {response.status_code}"
            raise DeliveryError(description, channel=self.channel.value)

        message_id = (body.get("result") or {}).get("message_id")
        return DeliveryReceipt(
            message_id=TransportMessageID(str(message_id)) if message_id is not None else None,
            response="ok",
        )

    async def aclose(self) -> None:
        await self._client.aclose()


class WhatsAppSender(ChannelSender):
    channel = Channel.WHATSAPP

    async def deliver(self, recipient: str, content: OutboundContent) -> DeliveryReceipt:
        raise ChannelNotSupportedError(
            "WhatsApp delivery is not available yet", channel=self.channel.value
        )


class DryRunSender(ChannelSender):
    """Composes like the wrapped sender but never calls its transport."""

    def __init__(self, inner: ChannelSender):
        self.inner = inner
        self.channel = inner.channel

    def compose(self, message: NotificationMessage) -> OutboundContent:
        return self.inner.compose(message)

    async def deliver(self, recipient: str, content: OutboundContent) -> DeliveryReceipt:
        logger.info("[DRY RUN] Would send %s to %s: %s", self.channel.value, recipient, content.subject)
        return DeliveryReceipt(
            message_id=TransportMessageID(f"dry-run-{uuid.uuid4()}"), response="dry run"
        )

    async def aclose(self) -> None:
        await self.inner.aclose()


def build_sender(channel: Channel, settings: Settings, dry_run: bool = False) -> ChannelSender:
    """
    Create the sender for a channel.

    Raises:
        ConfigurationError: If email is selected without RESEND_API_KEY (unless dry_run)
    """
    if channel == Channel.EMAIL:
        if not settings.resend_api_key and not dry_run:
            raise ConfigurationError("RESEND_API_KEY must be set to send email notifications")
        sender: ChannelSender = EmailSender(
            settings.resend_api_key or "",
            settings.notification_from_email,
            sender_name=settings.notification_sender_name,
            manage_base_url=settings.frontend_base_url,
            secret_key=settings.unsubscribe_secret_key,
        )
    elif channel == Channel.TELEGRAM:
        if not settings.telegram_bot_token:
            logger.warning("TELEGRAM_BOT_TOKEN is not set, every telegram delivery will fail")
        sender = TelegramSender(settings.telegram_bot_token, settings.telegram_api_base)
    elif channel == Channel.WHATSAPP:
        sender = WhatsAppSender()
    else:
        raise ConfigurationError(f"Unknown channel: {channel}")

    return DryRunSender(sender) if dry_run else sender
