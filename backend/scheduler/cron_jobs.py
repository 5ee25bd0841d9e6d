"""
Cron timers for the weather scheduler.

One APScheduler job per tier. Jobs are coroutines on the process event loop,
so a slow run never blocks the timer; max_instances=1 plus the processor's
own in-progress guard keeps runs of the same tier from overlapping.
"""

from collections.abc import Iterable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from scheduler.processor import WeatherProcessor
from shared.config import TierSchedule
from shared.errors import ConfigurationError
from shared.logger import setup_logger

logger = setup_logger("SCHEDULER")

SCHEDULER_TIMEZONE = "UTC"


def job_id(tier: TierSchedule) -> str:
    return f"weather-{tier.frequency.value}"


def build_scheduler(
    processor: WeatherProcessor, tiers: Iterable[TierSchedule]
) -> AsyncIOScheduler:
    """
    Create (but do not start) the scheduler with one cron job per tier.

    Raises:
        ConfigurationError: If a cron expression cannot be parsed
    """
    scheduler = AsyncIOScheduler(timezone=SCHEDULER_TIMEZONE)

    for tier in tiers:
        try:
            trigger = CronTrigger.from_crontab(tier.cron, timezone=SCHEDULER_TIMEZONE)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid cron for {tier.frequency.value} notifications: {tier.cron!r} ({e})"
            ) from e

        scheduler.add_job(
            processor.process_weather_for_subscribers,
            trigger,
            args=[tier.frequency],
            id=job_id(tier),
            name=f"{tier.frequency.value} weather notifications",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
        )
        logger.info("Scheduled %s weather check: %s", tier.frequency.value, tier.cron)

    return scheduler
