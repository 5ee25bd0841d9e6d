"""
Broker topology for weather notifications.

Every participant (the scheduler and each channel consumer) declares the same
topology on connect: one durable direct exchange per exchange name, one
durable queue per channel, and a binding of that queue by the channel's
routing key. Declarations are idempotent, so repeating them with identical
parameters is a no-op on the broker.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractQueue

from shared.config import QueueConfig
from shared.logger import setup_logger

logger = setup_logger("BROKER")


@dataclass
class Topology:
    exchanges: dict[str, AbstractExchange] = field(default_factory=dict)
    queues: dict[str, AbstractQueue] = field(default_factory=dict)


async def declare_topology(
    channel: AbstractChannel, queue_configs: Iterable[QueueConfig]
) -> Topology:
    """
    Declare exchanges, queues and bindings for the given channel configs.

    Args:
        channel: Open AMQP channel
        queue_configs: One QueueConfig per notification channel

    Returns:
        Topology with the declared exchange and queue handles by name
    """
    topology = Topology()

    for config in queue_configs:
        exchange = topology.exchanges.get(config.exchange_name)
        if exchange is None:
            exchange = await channel.declare_exchange(
                config.exchange_name, aio_pika.ExchangeType.DIRECT, durable=True
            )
            topology.exchanges[config.exchange_name] = exchange

        queue = await channel.declare_queue(config.queue_name, durable=True)
        await queue.bind(exchange, routing_key=config.routing_key)
        topology.queues[config.queue_name] = queue

        logger.debug(
            "Queue %s bound to %s with key %s",
            config.queue_name,
            config.exchange_name,
            config.routing_key,
        )

    return topology
