"""
RabbitMQ client shared by the scheduler (publisher) and channel consumers.

Connection loss is detected through close callbacks; the client then marks
itself disconnected and reconnects (re-declaring the topology) on the next
publish or consume call. Publishing never raises: failures are logged and
reported as False so the caller can move on to the next message.
"""

import asyncio
import json
import uuid
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import aio_pika
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractIncomingMessage,
    AbstractQueue,
)

from broker.topology import Topology, declare_topology
from models.notification import NotificationMessage
from models.types import Channel, Priority
from shared.config import QueueConfig
from shared.errors import BrokerError
from shared.logger import setup_logger

logger = setup_logger("BROKER")

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]

# AMQP priority per message priority
PRIORITY_LEVELS: dict[str, int] = {"normal": 5, "high": 10}


class RabbitMQClient:
    def __init__(
        self,
        url: str,
        queue_configs: Mapping[Channel, QueueConfig],
        publish_timeout: float = 5.0,
        settle_timeout: float = 10.0,
        connect: Callable[..., Awaitable[AbstractConnection]] = aio_pika.connect,
    ):
        self._url = url
        self._queue_configs = dict(queue_configs)
        self._publish_timeout = publish_timeout
        self._settle_timeout = settle_timeout
        self._connect = connect

        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._topology = Topology()
        self._consumers: dict[str, AbstractQueue] = {}

        self._connected = False
        self._closing = False
        self._connect_lock = asyncio.Lock()
        self._disconnected = asyncio.Event()
        self._disconnected.set()
        # Deliveries whose handler or ack/nack has not finished yet
        self._in_flight = 0
        self._settled = asyncio.Event()
        self._settled.set()

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """
        Open a connection and channel, then declare the topology.

        Safe to call concurrently and repeatedly; only one connect runs at a time.

        Raises:
            BrokerError: If the broker cannot be reached or declaration fails
        """
        async with self._connect_lock:
            if self._connected:
                return

            await self._release()
            self._closing = False

            connection: AbstractConnection | None = None
            try:
                connection = await self._connect(self._url)
                channel = await connection.channel(publisher_confirms=True)
                topology = await declare_topology(channel, self._queue_configs.values())
            except Exception as e:
                logger.error("Failed to connect to RabbitMQ: %s", e)
                if connection is not None:
                    await self._quiet_close(connection)
                raise BrokerError(f"Failed to connect to RabbitMQ: {e}") from e

            connection.close_callbacks.add(self._on_closed)
            channel.close_callbacks.add(self._on_closed)

            self._connection = connection
            self._channel = channel
            self._topology = topology
            self._connected = True
            self._disconnected.clear()
            logger.info("Connected to RabbitMQ, topology declared ✓")

    async def declare_topology(self) -> Topology:
        """Re-declare exchanges, queues and bindings on the open channel."""
        if not self._connected or self._channel is None:
            await self.connect()
            return self._topology

        self._topology = await declare_topology(self._channel, self._queue_configs.values())
        return self._topology

    async def wait_disconnected(self) -> None:
        await self._disconnected.wait()

    async def publish(
        self,
        exchange_name: str,
        routing_key: str,
        body: bytes,
        *,
        priority: Priority = "normal",
        headers: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        """
        Publish a persistent JSON message and wait for the broker confirm.

        Returns:
            True if the broker confirmed the message, False otherwise
        """
        if not self._connected:
            logger.warning("RabbitMQ not connected, attempting to reconnect...")
            try:
                await self.connect()
            except BrokerError as e:
                logger.error("Failed to reconnect to RabbitMQ: %s", e)
                return False

        exchange = self._topology.exchanges.get(exchange_name)
        if exchange is None:
            logger.error("Exchange %s is not declared", exchange_name)
            return False

        message = aio_pika.Message(
            body=body,
            content_type="application/json",
            content_encoding="utf-8",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            timestamp=timestamp or datetime.now(timezone.utc),
            message_id=str(uuid.uuid4()),
            priority=PRIORITY_LEVELS.get(priority, PRIORITY_LEVELS["normal"]),
            headers=headers or {},
        )

        try:
            await exchange.publish(
                message, routing_key=routing_key, timeout=self._publish_timeout
            )
        except Exception as e:
            logger.error("Error publishing to %s/%s: %s", exchange_name, routing_key, e)
            if self._connection is None or self._connection.is_closed:
                self._mark_disconnected()
            return False

        return True

    async def publish_notification(self, message: NotificationMessage) -> bool:
        """Publish a notification to the queue of its channel."""
        config = self._queue_configs.get(message.channel)
        if config is None:
            logger.error("Unknown notification channel: %s", message.channel)
            return False

        published = await self.publish(
            config.exchange_name,
            config.routing_key,
            message.to_wire(),
            priority=message.priority,
            headers={"channel": message.channel.value, "city": message.data.city},
            timestamp=datetime.fromtimestamp(message.timestamp / 1000, tz=timezone.utc),
        )
        if not published:
            logger.error("Failed to publish %s message to queue", message.channel.value)
        return published

    async def consume(
        self, queue_name: str, handler: MessageHandler, prefetch: int | None = None
    ) -> str:
        """
        Start consuming a queue.

        The handler gets the decoded JSON payload. If it returns, the message
        is acked. If it raises (or the body is not JSON), the message is
        nacked without requeue so a poison message is never redelivered.

        Returns:
            Consumer tag, for cancel()

        Raises:
            BrokerError: If the broker is unreachable or the queue is unknown
        """
        if not self._connected:
            await self.connect()

        queue = self._topology.queues.get(queue_name)
        if queue is None:
            raise BrokerError(f"Queue {queue_name} is not part of the declared topology")

        if prefetch:
            await self._channel.set_qos(prefetch_count=prefetch)

        async def on_message(message: AbstractIncomingMessage) -> None:
            self._in_flight += 1
            self._settled.clear()
            try:
                try:
                    payload = json.loads(message.body.decode("utf-8"))
                    await handler(payload)
                except Exception as e:
                    logger.error("Error processing message from %s: %s", queue_name, e)
                    await self._settle(message, ack=False)
                else:
                    await self._settle(message, ack=True)
            finally:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._settled.set()

        consumer_tag = await queue.consume(on_message)
        self._consumers[consumer_tag] = queue
        logger.info("Started consuming messages from %s (prefetch=%s)", queue_name, prefetch)
        return consumer_tag

    async def cancel(self, consumer_tag: str) -> None:
        """Stop new deliveries to a consumer; in-flight handlers keep running."""
        queue = self._consumers.pop(consumer_tag, None)
        if queue is None or not self._connected:
            return
        try:
            await queue.cancel(consumer_tag)
        except Exception as e:
            logger.warning("Could not cancel consumer %s: %s", consumer_tag, e)

    async def close(self) -> None:
        """Close channel and connection once in-flight deliveries are acked or nacked."""
        self._closing = True
        if self._in_flight:
            try:
                await asyncio.wait_for(self._settled.wait(), timeout=self._settle_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Closing with %d unsettled message(s); the broker will redeliver them",
                    self._in_flight,
                )
        await self._release()
        logger.info("Disconnected from RabbitMQ")

    async def _settle(self, message: AbstractIncomingMessage, ack: bool) -> None:
        # A lost channel means the broker redelivers unacked messages anyway
        try:
            if ack:
                await message.ack()
            else:
                await message.nack(requeue=False)
        except Exception as e:
            logger.warning("Could not %s message: %s", "ack" if ack else "nack", e)

    def _on_closed(self, sender: Any, exc: BaseException | None = None) -> None:
        # Ignore callbacks from handles replaced by a reconnect
        if self._closing or sender not in (self._connection, self._channel):
            return
        logger.error("RabbitMQ connection lost: %s", exc or "closed")
        self._mark_disconnected()

    def _mark_disconnected(self) -> None:
        self._connected = False
        self._consumers.clear()
        self._disconnected.set()

    async def _release(self) -> None:
        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None
        self._mark_disconnected()

        if channel is not None and not channel.is_closed:
            await self._quiet_close(channel)
        if connection is not None and not connection.is_closed:
            await self._quiet_close(connection)

    @staticmethod
    async def _quiet_close(resource: Any) -> None:
        try:
            await resource.close()
        except Exception as e:
            logger.warning("Error closing RabbitMQ %s: %s", type(resource).__name__, e)
