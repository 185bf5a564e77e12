"""
Persistence interface consumed by the queue engine.

Implementations must hand out copies: mutating a returned record must not
change what is stored until it is saved again. Store failures are raised
as `UpstreamUnavailable`.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from smartqueue.domain import EtaStats, QueueRecord, Ticket


class Repository(ABC):
    """Queue, ticket and statistics storage."""

    # --- Queues ---

    @abstractmethod
    async def load_queue(self, queue_id: str) -> Optional[QueueRecord]: ...

    @abstractmethod
    async def save_queue(self, queue: QueueRecord) -> None: ...

    @abstractmethod
    async def delete_queue(self, queue_id: str) -> None: ...

    @abstractmethod
    async def list_queues(self) -> list[QueueRecord]: ...

    # --- Tickets ---

    @abstractmethod
    async def load_ticket(self, ticket_id: str) -> Optional[Ticket]: ...

    @abstractmethod
    async def save_ticket(self, ticket: Ticket) -> None: ...

    @abstractmethod
    async def save_change(self, tickets: Iterable[Ticket], queue: Optional[QueueRecord]) -> None:
        """
        Save tickets and their queue as one unit.

        Either every record is stored or none is.
        """

    @abstractmethod
    async def list_waiting_tickets(self, queue_id: str) -> list[Ticket]:
        """Tickets still holding a place in line, in no particular order."""

    # --- Statistics ---

    @abstractmethod
    async def load_stats(self, queue_id: str, window_key: str) -> Optional[EtaStats]: ...

    @abstractmethod
    async def save_stats(self, stats: EtaStats) -> None: ...

    async def start(self) -> None:
        """Prepare the store (create tables, warm pools). No-op by default."""

    async def close(self) -> None:
        """Release connections. No-op by default."""
