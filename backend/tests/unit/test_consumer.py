"""
Unit tests for notifications/consumer.py
"""

import asyncio
import os
import shutil
import tempfile
import unittest
from unittest.mock import AsyncMock, Mock

from pydantic import ValidationError

from models.delivery import DeliveryReceipt
from models.types import Channel, DeliveryStatus
from notifications.channels import EmailSender
from notifications.consumer import ChannelConsumer
from notifications.throttle import SendThrottle
from shared.config import RetryPolicy
from shared.errors import BrokerError, DeliveryError
from tests.fixtures.subscription_factory import create_queue_configs, create_test_payload


def _sender(deliver_side_effect=None):
    sender = EmailSender("re_test", "w@example.com")
    sender.deliver = AsyncMock(
        return_value=DeliveryReceipt(message_id="email_123", response="accepted"),
        side_effect=deliver_side_effect,
    )
    sender.aclose = AsyncMock()
    return sender


async def _wait_forever():
    await asyncio.Event().wait()


def _broker():
    broker = Mock()
    broker.consume = AsyncMock(return_value="ctag-1")
    broker.cancel = AsyncMock()
    broker.close = AsyncMock()
    broker.wait_disconnected = AsyncMock(side_effect=_wait_forever)
    return broker


class ConsumerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.sleep = AsyncMock()
        self.delivery_log = Mock()
        self.delivery_log.save = AsyncMock()
        self.error_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.error_dir, ignore_errors=True)

    def _consumer(self, sender, retry_policy=RetryPolicy(), broker=None, **kwargs):
        return ChannelConsumer(
            Channel.EMAIL,
            sender,
            broker or _broker(),
            create_queue_configs()[Channel.EMAIL],
            SendThrottle(0),
            delivery_log=self.delivery_log,
            retry_policy=retry_policy,
            sleep=self.sleep,
            error_log_dir=self.error_dir,
            **kwargs,
        )

    def _logged(self):
        return [c.args[0] for c in self.delivery_log.save.await_args_list]


class TestHandle(ConsumerTestCase):
    """Tests for ChannelConsumer.handle()."""

    async def test_successful_send_is_logged_delivered(self):
        sender = _sender()
        consumer = self._consumer(sender)

        await consumer.handle(create_test_payload())

        recipient, content = sender.deliver.await_args.args
        self.assertEqual(recipient, "a@x.com")
        self.assertEqual(content.subject, "Weather Update for Paris")
        [entry] = self._logged()
        self.assertEqual(entry.status_code, DeliveryStatus.DELIVERED)
        self.assertEqual(entry.subscription_id, "sub-1")
        self.assertEqual(entry.channel, Channel.EMAIL)
        self.assertEqual(entry.message_id, "email_123")
        self.assertEqual(entry.attempt, 1)

    async def test_failed_send_is_logged_and_raises(self):
        sender = _sender(DeliveryError("Invalid recipient"))
        consumer = self._consumer(sender)

        with self.assertRaises(DeliveryError):
            await consumer.handle(create_test_payload())

        [entry] = self._logged()
        self.assertEqual(entry.status_code, DeliveryStatus.FAILED)
        self.assertEqual(entry.error_message, "Invalid recipient")
        self.assertEqual(sender.deliver.await_count, 1)

    async def test_unexpected_transport_error_becomes_delivery_error(self):
        consumer = self._consumer(_sender(ConnectionResetError("reset by peer")))

        with self.assertRaises(DeliveryError):
            await consumer.handle(create_test_payload())

        self.assertEqual(self._logged()[0].error_message, "reset by peer")

    async def test_wrong_channel_is_dropped(self):
        sender = _sender()
        consumer = self._consumer(sender)

        await consumer.handle(create_test_payload(channel=Channel.TELEGRAM, recipient="777"))

        sender.deliver.assert_not_awaited()
        self.delivery_log.save.assert_not_awaited()

    async def test_wrong_type_is_dropped(self):
        sender = _sender()
        payload = create_test_payload()
        payload["type"] = "newsletter_digest"

        await self._consumer(sender).handle(payload)

        sender.deliver.assert_not_awaited()

    async def test_malformed_message_raises(self):
        sender = _sender()
        payload = create_test_payload()
        del payload["data"]["weather"]

        with self.assertRaises(ValidationError):
            await self._consumer(sender).handle(payload)

        sender.deliver.assert_not_awaited()

    async def test_non_object_payload_raises(self):
        with self.assertRaises(ValueError):
            await self._consumer(_sender()).handle(["not", "an", "object"])

    async def test_delivery_log_failure_is_swallowed(self):
        self.delivery_log.save.side_effect = RuntimeError("db down")
        consumer = self._consumer(_sender())

        await consumer.handle(create_test_payload())

        reports = os.listdir(self.error_dir)
        self.assertEqual(len(reports), 1)
        with open(os.path.join(self.error_dir, reports[0]), encoding="utf-8") as f:
            report = f.read()
        self.assertIn("Error Type: delivery_log", report)
        self.assertIn("status_code: DELIVERED", report)

    async def test_delivery_log_failure_keeps_nack_decision(self):
        self.delivery_log.save.side_effect = RuntimeError("db down")
        consumer = self._consumer(_sender(DeliveryError("rejected")))

        with self.assertRaises(DeliveryError):
            await consumer.handle(create_test_payload())

    async def test_without_delivery_log(self):
        consumer = self._consumer(_sender())
        consumer.delivery_log = None

        await consumer.handle(create_test_payload())

    async def test_backoff_retries_until_success(self):
        sender = _sender()
        sender.deliver.side_effect = [
            DeliveryError("busy"),
            DeliveryError("busy"),
            DeliveryReceipt(message_id="email_9"),
        ]
        consumer = self._consumer(
            sender, RetryPolicy(mode="backoff", max_attempts=3, base_seconds=2)
        )

        await consumer.handle(create_test_payload())

        self.assertEqual(sender.deliver.await_count, 3)
        self.assertEqual([c.args[0] for c in self.sleep.await_args_list], [2, 4])
        self.assertEqual(
            [(e.status_code, e.attempt) for e in self._logged()],
            [
                (DeliveryStatus.FAILED, 1),
                (DeliveryStatus.FAILED, 2),
                (DeliveryStatus.DELIVERED, 3),
            ],
        )

    async def test_backoff_gives_up_after_max_attempts(self):
        sender = _sender(DeliveryError("busy"))
        consumer = self._consumer(
            sender, RetryPolicy(mode="backoff", max_attempts=2, base_seconds=1)
        )

        with self.assertRaises(DeliveryError):
            await consumer.handle(create_test_payload())

        self.assertEqual(sender.deliver.await_count, 2)
        self.assertEqual(len(self._logged()), 2)

    async def test_no_retry_by_default(self):
        sender = _sender(DeliveryError("busy"))

        with self.assertRaises(DeliveryError):
            await self._consumer(sender).handle(create_test_payload())

        self.sleep.assert_not_awaited()


class TestLifecycle(ConsumerTestCase):
    """Tests for start(), stop() and run()."""

    async def test_start_consumes_with_prefetch(self):
        broker = _broker()
        consumer = self._consumer(_sender(), broker=broker)

        tag = await consumer.start()

        self.assertEqual(tag, "ctag-1")
        broker.consume.assert_awaited_once_with("email_notifications", consumer.handle, 1)

    async def test_stop_cancels_and_closes(self):
        broker = _broker()
        sender = _sender()
        consumer = self._consumer(sender, broker=broker)
        await consumer.start()

        await consumer.stop()

        broker.cancel.assert_awaited_once_with("ctag-1")
        sender.aclose.assert_awaited_once()
        broker.close.assert_awaited_once()

    async def test_stop_waits_for_in_flight_handler(self):
        release = asyncio.Event()
        sender = _sender()
        finished = []

        async def slow_deliver(recipient, content):
            await release.wait()
            finished.append(recipient)
            return DeliveryReceipt(message_id="email_1")

        sender.deliver.side_effect = slow_deliver
        consumer = self._consumer(sender)
        handler = asyncio.create_task(consumer.handle(create_test_payload()))
        await asyncio.sleep(0)

        stopping = asyncio.create_task(consumer.stop())
        await asyncio.sleep(0)
        self.assertFalse(stopping.done())

        release.set()
        await asyncio.wait_for(stopping, timeout=1)
        await handler

        self.assertEqual(finished, ["a@x.com"])

    async def test_stop_gives_up_after_timeout(self):
        sender = _sender()
        never = asyncio.Event()

        async def stuck(recipient, content):
            await never.wait()

        sender.deliver.side_effect = stuck
        consumer = self._consumer(sender, shutdown_timeout=0.01)
        handler = asyncio.create_task(consumer.handle(create_test_payload()))
        await asyncio.sleep(0)

        await consumer.stop()

        sender.aclose.assert_awaited_once()
        handler.cancel()

    async def test_run_returns_when_stopped(self):
        broker = _broker()
        stop_event = asyncio.Event()
        consumer = self._consumer(_sender(), broker=broker)

        runner = asyncio.create_task(consumer.run(stop_event))
        await asyncio.sleep(0.01)
        stop_event.set()
        await asyncio.wait_for(runner, timeout=1)

        broker.consume.assert_awaited_once()

    async def test_run_restarts_after_disconnect(self):
        broker = _broker()
        stop_event = asyncio.Event()
        disconnects = [asyncio.Event(), asyncio.Event()]
        disconnects[0].set()

        async def wait_disconnected():
            await disconnects.pop(0).wait()

        broker.wait_disconnected = AsyncMock(side_effect=wait_disconnected)
        consumer = self._consumer(_sender(), broker=broker, reconnect_delay=0)

        runner = asyncio.create_task(consumer.run(stop_event))
        for _ in range(100):
            await asyncio.sleep(0.001)
            if broker.consume.await_count == 2:
                break
        stop_event.set()
        await asyncio.wait_for(runner, timeout=1)

        self.assertEqual(broker.consume.await_count, 2)

    async def test_run_retries_failed_start(self):
        broker = _broker()
        stop_event = asyncio.Event()
        broker.consume.side_effect = [BrokerError("refused"), "ctag-2"]
        consumer = self._consumer(_sender(), broker=broker, reconnect_delay=0)

        runner = asyncio.create_task(consumer.run(stop_event))
        for _ in range(100):
            await asyncio.sleep(0.001)
            if broker.consume.await_count == 2:
                break
        stop_event.set()
        await asyncio.wait_for(runner, timeout=1)

        self.assertEqual(broker.consume.await_count, 2)


if __name__ == "__main__":
    unittest.main()
