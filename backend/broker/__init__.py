"""
Message broker layer (RabbitMQ) between the scheduler and channel consumers.
"""

from .rabbitmq import PRIORITY_LEVELS, MessageHandler, RabbitMQClient
from .topology import Topology, declare_topology

__all__ = [
    "PRIORITY_LEVELS",
    "MessageHandler",
    "RabbitMQClient",
    "Topology",
    "declare_topology",
]
