"""
Channel consumer: turns queued notification messages into sends.

One consumer process serves one channel. For every delivered message it
checks the channel and type, waits for the channel's send slot, sends,
writes one delivery log row per attempt and then lets the broker client ack
(handler returned) or nack without requeue (handler raised).
"""

import asyncio
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, Protocol

from broker.rabbitmq import MessageHandler
from models.delivery import DeliveryLogEntry, DeliveryReceipt, OutboundContent
from models.notification import MESSAGE_TYPE, NotificationMessage
from models.types import Channel, DeliveryStatus
from notifications.channels import ChannelSender
from notifications.error_logger import log_notification_error
from notifications.throttle import SendThrottle
from shared.config import QueueConfig, RetryPolicy
from shared.errors import BrokerError, DeliveryError
from shared.lifecycle import wait_first
from shared.logger import setup_logger

logger = setup_logger("CONSUMER")


class MessageBroker(Protocol):
    async def consume(
        self, queue_name: str, handler: MessageHandler, prefetch: int | None = None
    ) -> str: ...

    async def cancel(self, consumer_tag: str) -> None: ...

    async def wait_disconnected(self) -> None: ...

    async def close(self) -> None: ...


class DeliveryLog(Protocol):
    async def save(self, entry: DeliveryLogEntry) -> None: ...


class ChannelConsumer:
    def __init__(
        self,
        channel: Channel,
        sender: ChannelSender,
        broker: MessageBroker,
        queue_config: QueueConfig,
        throttle: SendThrottle,
        delivery_log: DeliveryLog | None = None,
        retry_policy: RetryPolicy = RetryPolicy(),
        reconnect_delay: float = 5.0,
        shutdown_timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        error_log_dir: str | None = None,
    ):
        self.channel = channel
        self.sender = sender
        self.broker = broker
        self.queue_config = queue_config
        self.throttle = throttle
        self.delivery_log = delivery_log
        self.retry_policy = retry_policy
        self.reconnect_delay = reconnect_delay
        self.shutdown_timeout = shutdown_timeout
        self._sleep = sleep
        self._error_log_dir = error_log_dir

        self._consumer_tag: str | None = None
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    async def start(self) -> str:
        """
        Start consuming the channel queue.

        Raises:
            BrokerError: If the broker is unreachable
        """
        self._consumer_tag = await self.broker.consume(
            self.queue_config.queue_name, self.handle, self.queue_config.prefetch
        )
        logger.info(
            "📬 %s consumer listening on %s", self.channel.value, self.queue_config.queue_name
        )
        return self._consumer_tag

    async def handle(self, payload: Any) -> None:
        """
        Process one decoded message.

        Returns normally when the message should be acked (sent, or not meant
        for this consumer). Raises when it should be nacked (invalid message,
        or every send attempt failed).
        """
        self._in_flight += 1
        self._idle.clear()
        try:
            await self._handle(payload)
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def _handle(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise ValueError(f"Message is not a JSON object: {type(payload).__name__}")

        if payload.get("channel") != self.channel.value:
            logger.warning(
                "Dropping message for channel %r on %s consumer",
                payload.get("channel"),
                self.channel.value,
            )
            return

        if payload.get("type") != MESSAGE_TYPE:
            logger.warning("Dropping message of unknown type %r", payload.get("type"))
            return

        # Raises ValidationError for a malformed message
        message = NotificationMessage.from_payload(payload)
        content = self.sender.compose(message)

        attempts = self.retry_policy.attempts
        last_error: DeliveryError | None = None
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                delay = self.retry_policy.delay_before(attempt)
                logger.info(
                    "Retrying %s for %s in %.1fs (attempt %d/%d)",
                    self.channel.value, message.data.recipient, delay, attempt, attempts,
                )
                await self._sleep(delay)
            try:
                await self._attempt(message, content, attempt)
                return
            except DeliveryError as e:
                last_error = e

        raise last_error

    async def _attempt(
        self, message: NotificationMessage, content: OutboundContent, attempt: int
    ) -> DeliveryReceipt:
        recipient = message.data.recipient
        try:
            receipt = await self.throttle.run(partial(self.sender.deliver, recipient, content))
        except DeliveryError as e:
            error = e
        except Exception as e:
            error = DeliveryError(str(e) or type(e).__name__, channel=self.channel.value)
        else:
            logger.info("✓ Sent %s notification to %s", self.channel.value, recipient)
            await self._record(
                DeliveryLogEntry(
                    subscription_id=message.data.subscription_id,
                    status_code=DeliveryStatus.DELIVERED,
                    channel=self.channel,
                    recipient=recipient,
                    subject=content.subject,
                    message_id=receipt.message_id,
                    response=receipt.response,
                    attempt=attempt,
                )
            )
            return receipt

        logger.error("✗ Failed to send %s notification to %s: %s", self.channel.value, recipient, error)
        await self._record(
            DeliveryLogEntry(
                subscription_id=message.data.subscription_id,
                status_code=DeliveryStatus.FAILED,
                channel=self.channel,
                recipient=recipient,
                subject=content.subject,
                error_message=str(error),
                attempt=attempt,
            )
        )
        raise error

    async def _record(self, entry: DeliveryLogEntry) -> None:
        if self.delivery_log is None:
            return
        try:
            await self.delivery_log.save(entry)
        except Exception as e:
            logger.error("Error logging delivery for %s: %s", entry.subscription_id, e)
            try:
                error_file = log_notification_error(
                    error_type="delivery_log",
                    error_message=str(e),
                    context=entry.model_dump(mode="json"),
                    log_dir=self._error_log_dir,
                )
                logger.error("Delivery details logged to: %s", error_file)
            except OSError as file_error:
                logger.error("Could not write error report: %s", file_error)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Consume until stop_event is set, restarting after broker connection loss."""
        while not stop_event.is_set():
            try:
                await self.start()
            except BrokerError as e:
                logger.error("Could not start %s consumer: %s", self.channel.value, e)
            else:
                await wait_first(stop_event.wait(), self.broker.wait_disconnected())
                if stop_event.is_set():
                    break
                logger.warning("Broker connection lost, restarting %s consumer", self.channel.value)

            self._consumer_tag = None
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.reconnect_delay)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        """Stop new deliveries, let in-flight sends finish, then release resources."""
        if self._consumer_tag is not None:
            await self.broker.cancel(self._consumer_tag)
            self._consumer_tag = None

        try:
            await asyncio.wait_for(self._idle.wait(), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "%d in-flight message(s) did not finish within %.0fs",
                self._in_flight, self.shutdown_timeout,
            )

        await self.sender.aclose()
        await self.broker.close()
