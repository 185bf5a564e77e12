"""
Notification trigger.

The engine only decides *when* a customer should hear that their turn is
near; delivery belongs to a `Notifier`. Dispatch is fire-and-forget: the
caller never waits for delivery and failures are only logged.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from smartqueue.utils.bounded import bounded

logger = logging.getLogger(__name__)


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class Notifier(ABC):
    """Delivers a message about a ticket over a channel."""

    @abstractmethod
    async def notify(
        self,
        ticket_id: str,
        channel: NotificationChannel,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        """`address` is the recipient on the channel; None leaves it to the notifier."""


class LoggingNotifier(Notifier):
    """Writes notifications to the log instead of delivering them."""

    async def notify(
        self,
        ticket_id: str,
        channel: NotificationChannel,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        logger.info(
            "%s notification for ticket %s (to %s): %s",
            channel.value.upper(), ticket_id, address or "holder", message,
        )


class NotificationDispatcher:
    """Runs notifier calls as background tasks bounded by a timeout."""

    def __init__(
        self,
        notifier: Notifier,
        timeout_seconds: float = 5.0,
        channel: NotificationChannel = NotificationChannel.PUSH,
    ):
        self.notifier = notifier
        self.timeout_seconds = timeout_seconds
        self.channel = channel
        self._tasks: set[asyncio.Task] = set()

    async def _deliver(
        self,
        ticket_id: str,
        channel: NotificationChannel,
        message: str,
        address: Optional[str],
    ) -> None:
        try:
            await bounded(
                self.notifier.notify(ticket_id, channel, message, address),
                self.timeout_seconds,
                "notify",
            )
        except Exception as e:
            logger.warning("Failed to notify ticket %s via %s: %s", ticket_id, channel.value, e)

    def dispatch(
        self,
        ticket_id: str,
        message: str,
        channel: Optional[NotificationChannel] = None,
        address: Optional[str] = None,
    ) -> asyncio.Task:
        """Schedule a notification and return immediately."""
        task = asyncio.create_task(
            self._deliver(ticket_id, channel or self.channel, message, address)
        )
        # Keep a reference so the task is not garbage collected mid-flight
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight notifications (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
