"""
Unit tests for the CLI wiring in scheduler/run_scheduler.py and
notifications/process_notification_queue.py
"""

import unittest
from unittest.mock import AsyncMock, Mock, patch

from models.types import Channel, Frequency
from notifications.channels import DryRunSender, EmailSender
from notifications.delivery_log import DeliveryLogRepository
from notifications.process_notification_queue import build_consumer, run_consumer
from scheduler.run_scheduler import run_scheduler
from shared.config import load_settings
from shared.errors import BrokerError, ConfigurationError

SUPABASE_ENV = {"SUPABASE_URL": "https://db.test", "SUPABASE_SERVICE_KEY": "service"}


class TestRunScheduler(unittest.IsolatedAsyncioTestCase):
    """Tests for run_scheduler() in --run-once mode."""

    def setUp(self):
        patches = {
            "weather": patch("scheduler.run_scheduler.WeatherFetcherClient"),
            "broker": patch("scheduler.run_scheduler.RabbitMQClient"),
            "processor": patch("scheduler.run_scheduler.WeatherProcessor"),
            "db": patch("scheduler.run_scheduler.get_supabase_client"),
            "summary": patch("scheduler.run_scheduler.print_summary"),
        }
        self.mocks = {name: p.start() for name, p in patches.items()}
        for p in patches.values():
            self.addCleanup(p.stop)

        self.weather = self.mocks["weather"].return_value
        self.weather.aclose = AsyncMock()
        self.broker = self.mocks["broker"].return_value
        self.broker.connect = AsyncMock()
        self.broker.close = AsyncMock()
        self.processor = self.mocks["processor"].return_value
        self.processor.process_weather_for_subscribers = AsyncMock(return_value={"published": 1})

    async def test_run_once_processes_each_tier(self):
        await run_scheduler(load_settings(SUPABASE_ENV), list(Frequency), run_once=True)

        self.assertEqual(
            [c.args[0] for c in self.processor.process_weather_for_subscribers.await_args_list],
            [Frequency.HOURLY, Frequency.DAILY],
        )
        self.assertEqual(self.mocks["summary"].call_count, 2)
        self.weather.aclose.assert_awaited_once()
        self.broker.close.assert_awaited_once()

    async def test_broker_outage_at_boot_is_not_fatal(self):
        self.broker.connect.side_effect = BrokerError("refused")

        await run_scheduler(load_settings(SUPABASE_ENV), [Frequency.DAILY], run_once=True)

        self.processor.process_weather_for_subscribers.assert_awaited_once_with(Frequency.DAILY)


class TestBuildConsumer(unittest.TestCase):
    """Tests for build_consumer()."""

    @patch("notifications.process_notification_queue.get_supabase_client")
    def test_wires_channel_settings(self, mock_db):
        settings = load_settings({
            **SUPABASE_ENV,
            "RESEND_API_KEY": "re_test",
            "EMAIL_RATE_LIMIT_MS": "300",
            "SEND_RETRY_POLICY": "backoff",
        })

        consumer = build_consumer(settings, Channel.EMAIL)

        self.assertEqual(consumer.channel, Channel.EMAIL)
        self.assertEqual(consumer.queue_config.queue_name, "email_notifications")
        self.assertIsInstance(consumer.sender, EmailSender)
        self.assertIsInstance(consumer.delivery_log, DeliveryLogRepository)
        self.assertAlmostEqual(consumer.throttle.min_interval, 0.3)
        self.assertEqual(consumer.retry_policy.mode, "backoff")

    def test_requires_supabase(self):
        settings = load_settings({"RESEND_API_KEY": "re_test"})

        with self.assertRaises(ConfigurationError):
            build_consumer(settings, Channel.EMAIL)

    def test_dry_run_without_supabase(self):
        consumer = build_consumer(load_settings({}), Channel.EMAIL, dry_run=True)

        self.assertIsInstance(consumer.sender, DryRunSender)
        self.assertIsNone(consumer.delivery_log)


class TestRunConsumer(unittest.IsolatedAsyncioTestCase):
    @patch("notifications.process_notification_queue.install_signal_handlers")
    @patch("notifications.process_notification_queue.build_consumer")
    async def test_stops_consumer_after_run(self, mock_build, mock_signals):
        consumer = Mock()
        consumer.run = AsyncMock()
        consumer.stop = AsyncMock()
        mock_build.return_value = consumer

        await run_consumer(load_settings({}), Channel.TELEGRAM, dry_run=True)

        mock_build.assert_called_once()
        consumer.run.assert_awaited_once()
        consumer.stop.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()
