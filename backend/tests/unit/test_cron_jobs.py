"""
Unit tests for scheduler/cron_jobs.py
"""

import unittest

from apscheduler.triggers.cron import CronTrigger

from models.types import Frequency
from scheduler.cron_jobs import build_scheduler, job_id
from shared.config import TierSchedule
from shared.errors import ConfigurationError


class _StubProcessor:
    async def process_weather_for_subscribers(self, frequency):
        return {}


class TestBuildScheduler(unittest.TestCase):
    def setUp(self):
        self.processor = _StubProcessor()
        self.tiers = [
            TierSchedule(frequency=Frequency.HOURLY, cron="0 * * * *"),
            TierSchedule(frequency=Frequency.DAILY, cron="0 8 * * *"),
        ]

    def test_one_job_per_tier(self):
        scheduler = build_scheduler(self.processor, self.tiers)

        jobs = {job.id: job for job in scheduler.get_jobs()}

        self.assertEqual(set(jobs), {"weather-hourly", "weather-daily"})
        daily = jobs["weather-daily"]
        self.assertIsInstance(daily.trigger, CronTrigger)
        self.assertEqual(daily.args, (Frequency.DAILY,))
        self.assertEqual(daily.max_instances, 1)
        self.assertTrue(daily.coalesce)
        self.assertEqual(daily.func, self.processor.process_weather_for_subscribers)

    def test_single_tier(self):
        scheduler = build_scheduler(self.processor, self.tiers[1:])

        self.assertEqual([job.id for job in scheduler.get_jobs()], ["weather-daily"])

    def test_invalid_cron_field(self):
        tiers = [TierSchedule(frequency=Frequency.HOURLY, cron="61 * * * *")]

        with self.assertRaises(ConfigurationError):
            build_scheduler(self.processor, tiers)

    def test_job_id(self):
        self.assertEqual(job_id(self.tiers[0]), "weather-hourly")


if __name__ == "__main__":
    unittest.main()
