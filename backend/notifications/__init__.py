"""
Notification consumers for the weather pipeline.

This module handles:
- Composing weather notifications per channel
- Sending them via Resend (email) and the Telegram Bot API
- Rate limiting sends per channel
- Recording every send attempt in the delivery log
"""

from .channels import ChannelSender, build_sender
from .consumer import ChannelConsumer
from .throttle import SendThrottle

__all__ = [
    'ChannelConsumer',
    'ChannelSender',
    'SendThrottle',
    'build_sender',
]
