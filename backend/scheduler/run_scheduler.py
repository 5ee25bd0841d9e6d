"""
CLI entry point for the weather scheduler (notification producer).

Usage:
    # Run the hourly and daily cron jobs until SIGINT/SIGTERM
    uv run python -m scheduler.run_scheduler

    # Only the daily tier
    uv run python -m scheduler.run_scheduler --tier daily

    # Process the hourly tier once, right now, and exit
    uv run python -m scheduler.run_scheduler --tier hourly --run-once
"""

import argparse
import asyncio

from broker.rabbitmq import RabbitMQClient
from models.types import Frequency
from scheduler.cron_jobs import build_scheduler
from scheduler.processor import WeatherProcessor
from scheduler.subscription_store import SubscriptionStore
from scheduler.weather_fetcher import WeatherFetcherClient
from shared.config import Settings, load_settings
from shared.db import get_supabase_client
from shared.errors import BrokerError
from shared.lifecycle import install_signal_handlers
from shared.logger import configure_logging, setup_logger
from shared.utils import print_summary

logger = setup_logger("SCHEDULER")


async def run_scheduler(
    settings: Settings, frequencies: list[Frequency], run_once: bool = False
) -> None:
    """Wire the collaborators together and run until stopped."""
    weather = WeatherFetcherClient(
        settings.weather_fetcher_url,
        request_timeout=settings.weather_request_timeout,
        health_timeout=settings.weather_health_timeout,
        cache_ttl_seconds=settings.weather_cache_ttl_seconds,
    )
    broker = RabbitMQClient(
        settings.rabbitmq_url, settings.queues, publish_timeout=settings.publish_timeout_seconds
    )
    processor = WeatherProcessor(
        SubscriptionStore(get_supabase_client(settings)),
        weather,
        broker,
        max_concurrent_cities=settings.scheduler_max_concurrent_cities,
    )

    try:
        await broker.connect()
    except BrokerError as e:
        # Publishing reconnects on demand, so a broker outage at boot is not fatal
        logger.warning("Starting without a broker connection: %s", e)

    try:
        if run_once:
            for frequency in frequencies:
                stats = await processor.process_weather_for_subscribers(frequency)
                print_summary(f"{frequency.value.capitalize()} Weather Processing Complete", stats)
            return

        stop_event = asyncio.Event()
        install_signal_handlers(stop_event)

        scheduler = build_scheduler(processor, [settings.tiers[f] for f in frequencies])
        scheduler.start()
        logger.info("🚀 Weather scheduler started (%s)", ", ".join(f.value for f in frequencies))

        await stop_event.wait()

        logger.info("Stopping scheduler, no new ticks will fire")
        scheduler.shutdown(wait=False)
        if not await processor.wait_idle(settings.shutdown_timeout_seconds):
            logger.warning("In-flight runs did not finish within %.0fs", settings.shutdown_timeout_seconds)
    finally:
        await weather.aclose()
        await broker.close()
        logger.info("👋 Weather scheduler stopped")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Schedule and publish weather notifications")

    parser.add_argument(
        "--tier",
        choices=["hourly", "daily", "all"],
        default="all",
        help="Notification tier to schedule (default: all)",
    )

    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Process the selected tier(s) once immediately and exit",
    )

    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level)

    frequencies = list(Frequency) if args.tier == "all" else [Frequency(args.tier)]

    try:
        asyncio.run(run_scheduler(settings, frequencies, run_once=args.run_once))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
