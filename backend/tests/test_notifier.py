import asyncio
import logging

from smartqueue.services.notifier import (
    LoggingNotifier,
    NotificationChannel,
    NotificationDispatcher,
    Notifier,
)

from conftest import RecordingNotifier


class BrokenNotifier(Notifier):
    async def notify(self, ticket_id, channel, message, address=None):
        raise ConnectionError("gateway down")


class StuckNotifier(Notifier):
    async def notify(self, ticket_id, channel, message, address=None):
        await asyncio.sleep(60)


async def test_logging_notifier_keeps_no_history(caplog):
    caplog.set_level(logging.INFO, logger="smartqueue.services.notifier")
    notifier = LoggingNotifier()

    for i in range(100):
        await notifier.notify(f"t{i}", NotificationChannel.EMAIL, "Almost there")

    assert len(caplog.records) == 100
    assert "EMAIL notification for ticket t0 (to holder): Almost there" in caplog.text
    assert vars(notifier) == {}


async def test_dispatch_passes_channel_and_address():
    notifier = RecordingNotifier()
    dispatcher = NotificationDispatcher(notifier, channel=NotificationChannel.SMS)

    dispatcher.dispatch("t1", "Almost there")
    dispatcher.dispatch("t2", "Come in", channel=NotificationChannel.EMAIL, address="bob@example.com")
    await dispatcher.drain()

    assert sorted(notifier.sent) == [
        ("t1", NotificationChannel.SMS, "Almost there", None),
        ("t2", NotificationChannel.EMAIL, "Come in", "bob@example.com"),
    ]


async def test_failed_delivery_is_only_logged(caplog):
    dispatcher = NotificationDispatcher(BrokenNotifier())

    dispatcher.dispatch("t1", "Almost there")
    await dispatcher.drain()

    assert "Failed to notify ticket t1 via push" in caplog.text


async def test_slow_delivery_is_abandoned(caplog):
    dispatcher = NotificationDispatcher(StuckNotifier(), timeout_seconds=0.01)

    dispatcher.dispatch("t1", "Almost there")
    await dispatcher.drain()

    assert "Failed to notify ticket t1" in caplog.text
