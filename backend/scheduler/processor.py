"""
Turns "it is time for tier T" into published notification messages.

One run per tick: probe the weather service, load the tier's subscriptions,
look up the weather once per distinct city, and publish one message per
(subscription, channel with a recipient). A failed city or a failed publish
is logged and skipped; it never aborts the rest of the run.
"""

import asyncio
from collections.abc import Callable
from typing import Protocol

from models.notification import NotificationMessage
from models.subscription import Subscription
from models.types import Frequency
from scheduler.grouping import group_by_city
from scheduler.subscription_store import SubscriptionStore
from scheduler.weather_fetcher import WeatherFetcherClient
from shared.logger import setup_logger
from shared.utils import epoch_millis

logger = setup_logger("SCHEDULER")


class NotificationPublisher(Protocol):
    async def publish_notification(self, message: NotificationMessage) -> bool: ...


def _empty_stats() -> dict[str, int]:
    return {
        "subscriptions": 0,
        "cities": 0,
        "cities_failed": 0,
        "published": 0,
        "publish_failed": 0,
    }


class WeatherProcessor:
    def __init__(
        self,
        subscriptions: SubscriptionStore,
        weather: WeatherFetcherClient,
        publisher: NotificationPublisher,
        max_concurrent_cities: int = 1,
        clock: Callable[[], int] = epoch_millis,
    ):
        self._subscriptions = subscriptions
        self._weather = weather
        self._publisher = publisher
        self._max_concurrent_cities = max(1, max_concurrent_cities)
        self._clock = clock
        self._running: dict[Frequency, asyncio.Task | None] = {}

    def is_running(self, frequency: Frequency) -> bool:
        return frequency in self._running

    async def process_weather_for_subscribers(self, frequency: Frequency | str) -> dict[str, int]:
        """
        Process one tick for a tier.

        Args:
            frequency: Tier to process ("hourly" or "daily")

        Returns:
            Dictionary with stats: subscriptions, cities, cities_failed,
            published, publish_failed
        """
        frequency = Frequency(frequency)
        stats = _empty_stats()

        if frequency in self._running:
            logger.warning("%s run still in progress, skipping this tick", frequency.value)
            return stats

        self._running[frequency] = asyncio.current_task()
        try:
            await self._run(frequency, stats)
        except Exception as e:
            logger.exception("Error in %s weather processing: %s", frequency.value, e)
        finally:
            self._running.pop(frequency, None)

        return stats

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for in-flight runs; returns False if some were still running at timeout."""
        tasks = [
            task
            for task in self._running.values()
            if task is not None and task is not asyncio.current_task() and not task.done()
        ]
        if not tasks:
            return True

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    async def _run(self, frequency: Frequency, stats: dict[str, int]) -> None:
        if not await self._weather.check_health():
            logger.error(
                "Weather Fetcher service is not available, skipping this %s run", frequency.value
            )
            return

        subscriptions = await self._subscriptions.get_subscriptions_to_process(frequency)
        stats["subscriptions"] = len(subscriptions)
        logger.info(
            "Found %d confirmed subscriptions for %s notifications",
            len(subscriptions),
            frequency.value,
        )

        if not subscriptions:
            logger.info("No confirmed subscriptions found for processing")
            return

        subscriptions_by_city = group_by_city(subscriptions)
        stats["cities"] = len(subscriptions_by_city)
        logger.info("Processing %d unique cities", len(subscriptions_by_city))

        semaphore = asyncio.Semaphore(self._max_concurrent_cities)

        async def bounded(city: str, city_subscriptions: list[Subscription]) -> None:
            async with semaphore:
                await self._process_city(city, city_subscriptions, stats)

        await asyncio.gather(
            *(bounded(city, subs) for city, subs in subscriptions_by_city.items())
        )

        logger.info(
            "Completed %s weather processing: %d subscriptions, %d cities "
            "(%d failed), %d published, %d publish failures",
            frequency.value,
            stats["subscriptions"],
            stats["cities"],
            stats["cities_failed"],
            stats["published"],
            stats["publish_failed"],
        )

    async def _process_city(
        self, city: str, subscriptions: list[Subscription], stats: dict[str, int]
    ) -> None:
        try:
            weather = await self._weather.get_weather(city)
        except Exception as e:
            logger.error("Error fetching weather for %s: %s", city, e)
            weather = None

        if weather is None:
            logger.error(
                "No weather for %s, skipping %d subscriptions", city, len(subscriptions)
            )
            stats["cities_failed"] += 1
            return

        for subscription in subscriptions:
            for channel, recipient in subscription.recipients().items():
                message = NotificationMessage.build(
                    subscription, channel, recipient, weather, sent_at_ms=self._clock()
                )
                if await self._publish(message):
                    stats["published"] += 1
                else:
                    logger.error(
                        "Failed to queue %s notification for %s (%s)",
                        channel.value,
                        recipient,
                        city,
                    )
                    stats["publish_failed"] += 1

    async def _publish(self, message: NotificationMessage) -> bool:
        try:
            return await self._publisher.publish_notification(message)
        except Exception as e:
            logger.error("Error publishing notification: %s", e)
            return False
