from datetime import datetime, timedelta
from typing import Optional

import pytest
import pytz

from smartqueue.config import Settings
from smartqueue.exceptions import UpstreamUnavailable
from smartqueue.repositories.memory import InMemoryRepository
from smartqueue.services.notifier import NotificationChannel, Notifier
from smartqueue.services.queue_orchestrator import QueueOrchestrator

# 2024-05-14 is a Tuesday
TUESDAY_1030 = datetime(2024, 5, 14, 10, 30, tzinfo=pytz.UTC)
TUESDAY_0800 = datetime(2024, 5, 14, 8, 0, tzinfo=pytz.UTC)


class FakeClock:
    """Callable clock; optionally moves forward a little on every read."""

    def __init__(self, now: datetime, step: timedelta = timedelta(0)):
        self.current = now
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current = self.current + self.step
        return now

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class FlakyRepository(InMemoryRepository):
    """In-memory store whose individual operations can be switched off."""

    def __init__(self) -> None:
        super().__init__()
        self.failing: set[str] = set()

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise UpstreamUnavailable(f"{operation} is down")

    async def load_stats(self, queue_id, window_key):
        self._check("load_stats")
        return await super().load_stats(queue_id, window_key)

    async def save_stats(self, stats):
        self._check("save_stats")
        await super().save_stats(stats)

    async def save_ticket(self, ticket):
        self._check("save_ticket")
        await super().save_ticket(ticket)

    async def save_queue(self, queue):
        self._check("save_queue")
        await super().save_queue(queue)

    async def save_change(self, tickets, queue):
        tickets = list(tickets)
        if tickets:
            self._check("save_tickets")
        if queue is not None:
            self._check("save_queue")
        await super().save_change(tickets, queue)


class RecordingNotifier(Notifier):
    """Keeps every notification it is asked to deliver."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, NotificationChannel, str, Optional[str]]] = []

    async def notify(self, ticket_id, channel, message, address=None):
        self.sent.append((ticket_id, channel, message, address))


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        storage_backend="memory",
        admin_api_key="test-admin-key",
        timezone="UTC",
        notify_ahead_positions=0,
        lock_timeout_seconds=1.0,
        store_timeout_seconds=1.0,
    )


@pytest.fixture
def clock():
    return FakeClock(TUESDAY_1030, step=timedelta(milliseconds=1))


@pytest.fixture
def repository():
    return FlakyRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def orchestrator(repository, settings, notifier, clock):
    return QueueOrchestrator.from_settings(repository, settings, notifier=notifier, clock=clock)


@pytest.fixture
async def queue(orchestrator):
    return await orchestrator.create_queue("Q1", "Front Desk", max_capacity=10)
