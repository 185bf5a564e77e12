"""
Ticket ledger - the ordered set of waiting tickets per queue.

The ledger keeps an in-memory book for each queue it has seen: the queue
record plus every ticket still holding a place in line. Positions are never
cached as counters; they are derived from a full sort of the waiting
tickets by (joined_at, ticket_id) whenever they are needed, so a skewed
clock can reorder tickets but never leave a gap.

Mutating methods are synchronous and meant to run while the caller holds
the queue's lock. Each returns a `LedgerChange` describing the records to
persist and an `undo` callable that reverts the in-memory effect if the
write does not go through.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from smartqueue.domain import (
    QueueRecord,
    Ticket,
    TicketStatus,
    generate_ticket_id,
)
from smartqueue.exceptions import (
    InvalidTransition,
    QueueFull,
    QueueInactive,
    QueueNotFound,
    TicketNotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass
class QueueBook:
    """In-memory state of one queue."""

    queue: QueueRecord
    waiting: dict[str, Ticket] = field(default_factory=dict)

    def ordered(self) -> list[Ticket]:
        return sorted(self.waiting.values(), key=lambda t: t.sort_key)


@dataclass
class LedgerChange:
    """Records to persist after a mutation, and how to take it back."""

    tickets: list[Ticket] = field(default_factory=list)
    queue: Optional[QueueRecord] = None
    undo: Callable[[], None] = lambda: None


class TicketLedger:
    """Owns positions and status transitions of tickets."""

    def __init__(self) -> None:
        self._books: dict[str, QueueBook] = {}
        self._ticket_queue: dict[str, str] = {}  # ticket_id -> queue_id

    # -------------------- books --------------------

    def has_book(self, queue_id: str) -> bool:
        return queue_id in self._books

    def install(self, queue: QueueRecord, waiting: list[Ticket]) -> QueueBook:
        """
        Install a hydrated book unless another caller got there first.

        Returns the book that is now authoritative for the queue.
        """
        existing = self._books.get(queue.queue_id)
        if existing is not None:
            return existing

        book = QueueBook(queue=queue)
        for ticket in waiting:
            if ticket.is_waiting and ticket.queue_id == queue.queue_id:
                book.waiting[ticket.ticket_id] = ticket
                self._ticket_queue[ticket.ticket_id] = queue.queue_id
        self._books[queue.queue_id] = book
        return book

    def forget(self, queue_id: str) -> None:
        book = self._books.pop(queue_id, None)
        if book:
            for ticket_id in book.waiting:
                self._ticket_queue.pop(ticket_id, None)

    def book(self, queue_id: str) -> QueueBook:
        book = self._books.get(queue_id)
        if book is None:
            raise QueueNotFound(queue_id)
        return book

    def queue(self, queue_id: str) -> QueueRecord:
        return self.book(queue_id).queue

    def replace_queue(self, queue: QueueRecord) -> Callable[[], None]:
        """Swap in an updated queue record; returns the undo."""
        book = self.book(queue.queue_id)
        previous = book.queue
        book.queue = queue

        def undo() -> None:
            book.queue = previous

        return undo

    # -------------------- reads --------------------

    def waiting(self, queue_id: str) -> list[Ticket]:
        """Waiting tickets of a queue, front of the line first."""
        return self.book(queue_id).ordered()

    def waiting_count(self, queue_id: str) -> int:
        return len(self.book(queue_id).waiting)

    def find(self, ticket_id: str) -> Optional[Ticket]:
        """A waiting ticket by ID, or None if it is not in line."""
        queue_id = self._ticket_queue.get(ticket_id)
        if queue_id is None:
            return None
        book = self._books.get(queue_id)
        return book.waiting.get(ticket_id) if book else None

    def position_of(self, queue_id: str, ticket_id: str) -> int:
        """
        Current 1-based rank of a waiting ticket.

        Raises TicketNotFound if the ticket is not waiting in `queue_id`.
        """
        book = self.book(queue_id)
        if ticket_id not in book.waiting:
            raise TicketNotFound(ticket_id)
        for index, ticket in enumerate(book.ordered(), start=1):
            if ticket.ticket_id == ticket_id:
                return index
        raise TicketNotFound(ticket_id)

    # -------------------- mutations --------------------

    def resequence(self, queue_id: str) -> list[Ticket]:
        """
        Rewrite the stored position of every waiting ticket.

        Returns copies of the tickets whose position changed.
        """
        changed = []
        for index, ticket in enumerate(self.book(queue_id).ordered(), start=1):
            if ticket.position != index:
                ticket.position = index
                changed.append(ticket.copy())
        return changed

    def join(self, queue_id: str, holder: str, now: datetime) -> tuple[Ticket, LedgerChange]:
        """
        Put a new WAITING ticket at the back of the line.

        Raises:
            QueueNotFound: the queue is unknown
            QueueInactive: the queue is not accepting customers
            QueueFull: no open slots are left
        """
        book = self.book(queue_id)
        queue = book.queue
        if not queue.is_active:
            raise QueueInactive(queue_id)
        if queue.open_slots <= 0:
            raise QueueFull(queue_id)

        ticket = Ticket(
            ticket_id=generate_ticket_id(),
            queue_id=queue_id,
            holder=holder,
            joined_at=now,
            status=TicketStatus.WAITING,
            status_changed_at=now,
        )
        book.waiting[ticket.ticket_id] = ticket
        self._ticket_queue[ticket.ticket_id] = queue_id

        previous_updated_at = queue.updated_at
        queue.open_slots -= 1
        queue.updated_at = now

        changed = {t.ticket_id: t for t in self.resequence(queue_id)}
        changed[ticket.ticket_id] = ticket.copy()

        def undo() -> None:
            if book.waiting.pop(ticket.ticket_id, None) is not None:
                self._ticket_queue.pop(ticket.ticket_id, None)
                queue.open_slots = min(queue.max_capacity, queue.open_slots + 1)
                queue.updated_at = previous_updated_at
                self.resequence(queue_id)

        return ticket.copy(), LedgerChange(
            tickets=list(changed.values()),
            queue=queue.copy(),
            undo=undo,
        )

    def serve_next(self, queue_id: str, count: int, now: datetime) -> tuple[list[Ticket], LedgerChange]:
        """
        Mark up to `count` tickets from the front of the line as SERVED.

        Returns the tickets actually served, which is fewer than `count`
        when the line is shorter.
        """
        if count < 1:
            raise ValidationError("count must be at least 1", queue_id)

        book = self.book(queue_id)
        queue = book.queue
        front = book.ordered()[:count]

        originals = [t.copy() for t in front]
        served = []
        for ticket in front:
            # Position stays as the last known one
            ticket.status = TicketStatus.SERVED
            ticket.status_changed_at = now
            del book.waiting[ticket.ticket_id]
            self._ticket_queue.pop(ticket.ticket_id, None)
            served.append(ticket.copy())

        previous_slots = queue.open_slots
        previous_updated_at = queue.updated_at
        queue.open_slots = min(queue.max_capacity, queue.open_slots + len(served))
        released = queue.open_slots - previous_slots
        queue.updated_at = now

        moved = self.resequence(queue_id)

        def undo() -> None:
            for original in originals:
                book.waiting[original.ticket_id] = original
                self._ticket_queue[original.ticket_id] = queue_id
            queue.open_slots = max(0, queue.open_slots - released)
            queue.updated_at = previous_updated_at
            self.resequence(queue_id)

        return served, LedgerChange(
            tickets=served + moved,
            queue=queue.copy(),
            undo=undo,
        )

    def _leave(self, ticket_id: str, target: TicketStatus, now: datetime) -> tuple[Ticket, LedgerChange]:
        ticket = self.find(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)

        queue_id = ticket.queue_id
        book = self.book(queue_id)
        queue = book.queue
        original = ticket.copy()

        ticket.status = target
        ticket.status_changed_at = now
        del book.waiting[ticket_id]
        self._ticket_queue.pop(ticket_id, None)

        previous_slots = queue.open_slots
        queue.open_slots = min(queue.max_capacity, queue.open_slots + 1)
        released = queue.open_slots - previous_slots
        queue.updated_at = now

        moved = self.resequence(queue_id)

        def undo() -> None:
            book.waiting[ticket_id] = original
            self._ticket_queue[ticket_id] = queue_id
            queue.open_slots = max(0, queue.open_slots - released)
            self.resequence(queue_id)

        return ticket.copy(), LedgerChange(
            tickets=[ticket.copy()] + moved,
            queue=queue.copy(),
            undo=undo,
        )

    def cancel(self, ticket_id: str, now: datetime) -> tuple[Ticket, LedgerChange]:
        """Customer leaves the line."""
        return self._leave(ticket_id, TicketStatus.CANCELLED, now)

    def expire(self, ticket_id: str, now: datetime) -> tuple[Ticket, LedgerChange]:
        """Ticket timed out (no-show)."""
        return self._leave(ticket_id, TicketStatus.EXPIRED, now)

    def mark_notified(self, ticket_id: str, now: datetime) -> tuple[Ticket, LedgerChange]:
        """Record that the holder was told their turn is near."""
        ticket = self.find(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        if not ticket.is_waiting:
            raise InvalidTransition(ticket_id, ticket.status.value, TicketStatus.NOTIFIED.value)

        original = ticket.copy()
        ticket.status = TicketStatus.NOTIFIED
        ticket.last_notified_at = now
        ticket.notification_count += 1
        if original.status != TicketStatus.NOTIFIED:
            ticket.status_changed_at = now

        book = self.book(ticket.queue_id)

        def undo() -> None:
            if ticket_id in book.waiting:
                book.waiting[ticket_id] = original

        return ticket.copy(), LedgerChange(tickets=[ticket.copy()], undo=undo)

    def record_eta(self, ticket_id: str, minutes: int) -> Optional[Ticket]:
        """
        Note the last computed ETA on a waiting ticket.

        In memory only: the value is persisted with the next `LedgerChange`
        that carries this ticket.
        """
        ticket = self.find(ticket_id)
        if ticket is None:
            return None
        ticket.last_eta_minutes = minutes
        return ticket.copy()
