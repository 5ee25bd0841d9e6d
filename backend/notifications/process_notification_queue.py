"""
CLI script for consuming a channel's notification queue and sending messages.

Usage:
    # Send email notifications as they arrive
    uv run python -m notifications.process_notification_queue --channel email

    # Telegram consumer
    uv run python -m notifications.process_notification_queue --channel telegram

    # Dry run (consume and log, don't actually send)
    uv run python -m notifications.process_notification_queue --channel email --dry-run
"""

import argparse
import asyncio

from broker.rabbitmq import RabbitMQClient
from models.types import Channel
from notifications.channels import build_sender
from notifications.consumer import ChannelConsumer
from notifications.delivery_log import DeliveryLogRepository
from notifications.throttle import SendThrottle
from shared.config import Settings, load_settings
from shared.db import get_supabase_client
from shared.errors import ConfigurationError
from shared.lifecycle import install_signal_handlers
from shared.logger import configure_logging, setup_logger

logger = setup_logger("CONSUMER")


def build_consumer(settings: Settings, channel: Channel, dry_run: bool = False) -> ChannelConsumer:
    """
    Wire a consumer for one channel from settings.

    In dry-run mode nothing is sent and, when Supabase is not configured,
    nothing is written to the delivery log either.
    """
    queue_config = settings.queue_for(channel)
    sender = build_sender(channel, settings, dry_run=dry_run)

    try:
        delivery_log = DeliveryLogRepository(get_supabase_client(settings))
    except ConfigurationError:
        if not dry_run:
            raise
        logger.warning("[DRY RUN] Supabase not configured, delivery log disabled")
        delivery_log = None

    broker = RabbitMQClient(
        settings.rabbitmq_url,
        {channel: queue_config},
        publish_timeout=settings.publish_timeout_seconds,
        settle_timeout=settings.shutdown_timeout_seconds,
    )

    return ChannelConsumer(
        channel,
        sender,
        broker,
        queue_config,
        SendThrottle(settings.rate_limit_seconds(channel)),
        delivery_log=delivery_log,
        retry_policy=settings.retry_policy,
        reconnect_delay=settings.reconnect_delay_seconds,
        shutdown_timeout=settings.shutdown_timeout_seconds,
    )


async def run_consumer(settings: Settings, channel: Channel, dry_run: bool = False) -> None:
    consumer = build_consumer(settings, channel, dry_run=dry_run)

    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)

    logger.info(
        "🚀 Starting %s consumer (rate limit %.0fms, retry policy %s)%s",
        channel.value,
        settings.rate_limit_seconds(channel) * 1000,
        settings.retry_policy.mode,
        " [DRY RUN]" if dry_run else "",
    )
    try:
        await consumer.run(stop_event)
    finally:
        await consumer.stop()
        logger.info("👋 %s consumer stopped", channel.value)


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Consume a notification queue and send messages"
    )

    parser.add_argument(
        "--channel",
        choices=[channel.value for channel in Channel],
        required=True,
        help="Channel queue to consume",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry run mode (don't actually send messages)",
    )

    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level)

    try:
        asyncio.run(run_consumer(settings, Channel(args.channel), dry_run=args.dry_run))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
