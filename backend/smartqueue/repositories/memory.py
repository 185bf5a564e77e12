"""In-memory repository, used for development and tests."""

import logging
from typing import Iterable, Optional

from smartqueue.domain import EtaStats, QueueRecord, Ticket
from smartqueue.repositories.base import Repository

logger = logging.getLogger(__name__)


class InMemoryRepository(Repository):
    """
    Dictionary-backed store.

    Records are copied on the way in and on the way out so callers never
    share instances with the store.
    """

    def __init__(self) -> None:
        self._queues: dict[str, QueueRecord] = {}
        self._tickets: dict[str, Ticket] = {}
        self._stats: dict[tuple[str, str], EtaStats] = {}

    async def load_queue(self, queue_id: str) -> Optional[QueueRecord]:
        queue = self._queues.get(queue_id)
        return queue.copy() if queue else None

    async def save_queue(self, queue: QueueRecord) -> None:
        self._queues[queue.queue_id] = queue.copy()

    async def delete_queue(self, queue_id: str) -> None:
        self._queues.pop(queue_id, None)

    async def list_queues(self) -> list[QueueRecord]:
        return [q.copy() for q in sorted(self._queues.values(), key=lambda q: q.queue_id)]

    async def load_ticket(self, ticket_id: str) -> Optional[Ticket]:
        ticket = self._tickets.get(ticket_id)
        return ticket.copy() if ticket else None

    async def save_ticket(self, ticket: Ticket) -> None:
        self._tickets[ticket.ticket_id] = ticket.copy()

    async def save_change(self, tickets: Iterable[Ticket], queue: Optional[QueueRecord]) -> None:
        # Copy everything first so a bad record leaves the store untouched
        ticket_copies = [t.copy() for t in tickets]
        queue_copy = queue.copy() if queue is not None else None
        for ticket in ticket_copies:
            self._tickets[ticket.ticket_id] = ticket
        if queue_copy is not None:
            self._queues[queue_copy.queue_id] = queue_copy

    async def list_waiting_tickets(self, queue_id: str) -> list[Ticket]:
        return [
            t.copy()
            for t in self._tickets.values()
            if t.queue_id == queue_id and t.is_waiting
        ]

    async def load_stats(self, queue_id: str, window_key: str) -> Optional[EtaStats]:
        stats = self._stats.get((queue_id, window_key))
        return stats.copy() if stats else None

    async def save_stats(self, stats: EtaStats) -> None:
        logger.debug("Saving ETA stats %s", stats.primary_key)
        self._stats[(stats.queue_id, stats.window_key)] = stats.copy()
