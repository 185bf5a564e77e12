"""
Queue orchestrator - the façade the HTTP layer talks to.

Coordinates the ticket ledger, the service-rate estimator and the ETA
predictor for each use case, and enforces queue-level rules (capacity,
active flag).

Every mutation follows the same shape:

1. hydrate the queue's book from the repository (no lock held)
2. apply the change in memory while holding the queue's lock
3. release the lock, then persist the changed records with a timeout
4. if persisting fails, re-take the lock, undo the in-memory change and
   raise UpstreamUnavailable

so a caller either sees the whole effect or an explicit error.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from smartqueue.config import Settings
from smartqueue.domain import (
    EtaEstimate,
    EtaStats,
    JoinResult,
    NotificationResult,
    ProcessResult,
    QueueRecord,
    StatusResult,
    Ticket,
    TicketStatus,
)
from smartqueue.exceptions import (
    InvalidTransition,
    QueueExists,
    QueueNotEmpty,
    QueueNotFound,
    TicketNotFound,
    UpstreamUnavailable,
    ValidationError,
)
from smartqueue.repositories.base import Repository
from smartqueue.services.eta_predictor import EtaPredictor
from smartqueue.services.notifier import (
    LoggingNotifier,
    NotificationChannel,
    NotificationDispatcher,
    Notifier,
)
from smartqueue.services.queue_locks import QueueLocks
from smartqueue.services.service_rate import ServiceRateEstimator
from smartqueue.services.ticket_ledger import LedgerChange, QueueBook, TicketLedger
from smartqueue.utils.bounded import bounded
from smartqueue.utils.timezone import from_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_NOTIFY_MESSAGE = "Your turn is coming up soon!"


class QueueOrchestrator:
    """Join, status, process-next and stats use cases for all queues."""

    def __init__(
        self,
        repository: Repository,
        ledger: TicketLedger,
        estimator: ServiceRateEstimator,
        predictor: EtaPredictor,
        locks: QueueLocks,
        dispatcher: NotificationDispatcher,
        *,
        timezone: str = "UTC",
        measurement_window_seconds: float = 60.0,
        default_max_capacity: int = 100,
        notify_ahead_positions: int = 3,
        store_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.ledger = ledger
        self.estimator = estimator
        self.predictor = predictor
        self.locks = locks
        self.dispatcher = dispatcher
        self.timezone = timezone
        self.measurement_window_seconds = measurement_window_seconds
        self.default_max_capacity = default_max_capacity
        self.notify_ahead_positions = notify_ahead_positions
        self.store_timeout_seconds = store_timeout_seconds
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        repository: Repository,
        settings: Settings,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "QueueOrchestrator":
        """Wire up all components from application settings."""
        locks = QueueLocks(timeout_seconds=settings.lock_timeout_seconds)
        estimator = ServiceRateEstimator(
            repository,
            locks,
            alpha=settings.ema_alpha,
            default_rate=settings.default_service_rate,
            min_rate=settings.min_service_rate,
            default_p50_minutes=settings.default_p50_minutes,
            default_p90_minutes=settings.default_p90_minutes,
            carry_forward=settings.ema_carry_forward,
            store_timeout_seconds=settings.store_timeout_seconds,
        )
        predictor = EtaPredictor(
            estimator,
            min_rate=settings.min_service_rate,
            fallback_minutes_per_position=settings.fallback_minutes_per_position,
            default_p50_minutes=settings.default_p50_minutes,
            default_p90_minutes=settings.default_p90_minutes,
        )
        dispatcher = NotificationDispatcher(
            notifier or LoggingNotifier(),
            timeout_seconds=settings.notify_timeout_seconds,
        )
        return cls(
            repository,
            TicketLedger(),
            estimator,
            predictor,
            locks,
            dispatcher,
            timezone=settings.timezone,
            measurement_window_seconds=settings.measurement_window_seconds,
            default_max_capacity=settings.default_max_capacity,
            notify_ahead_positions=settings.notify_ahead_positions,
            store_timeout_seconds=settings.store_timeout_seconds,
            clock=clock,
        )

    # =========================================================================
    # Plumbing
    # =========================================================================

    def now(self) -> datetime:
        """Current time in the queue site's timezone."""
        return from_utc(self.clock(), self.timezone)

    async def _store(self, awaitable, operation: str):
        return await bounded(awaitable, self.store_timeout_seconds, operation)

    async def _hydrate(self, queue_id: str) -> QueueBook:
        """Make sure the ledger has a book for `queue_id`."""
        if self.ledger.has_book(queue_id):
            return self.ledger.book(queue_id)

        queue = await self._store(self.repository.load_queue(queue_id), "load_queue")
        if queue is None:
            raise QueueNotFound(queue_id)
        waiting = await self._store(
            self.repository.list_waiting_tickets(queue_id), "list_waiting_tickets"
        )
        book = self.ledger.install(queue, waiting)
        logger.debug("Hydrated queue %s with %d waiting tickets", queue_id, len(book.waiting))
        return book

    async def _commit(self, queue_id: str, change: LedgerChange, operation: str) -> None:
        """Persist a ledger change; undo it in memory if the store fails."""
        try:
            await self._store(self.repository.save_change(change.tickets, change.queue), operation)
        except UpstreamUnavailable:
            logger.error("Could not persist %s for queue %s, rolling back", operation, queue_id)
            async with self.locks.hold(queue_id):
                change.undo()
            raise

    async def _set_queue_rate(self, queue_id: str, ema: float) -> None:
        async with self.locks.hold(queue_id):
            updated = self.ledger.queue(queue_id).copy()
            updated.service_rate_ema = ema
            undo = self.ledger.replace_queue(updated)
        await self._commit(queue_id, LedgerChange(queue=updated.copy(), undo=undo), "update_queue_rate")

    # =========================================================================
    # Customer operations
    # =========================================================================

    async def join_queue(self, queue_id: str, holder: str) -> JoinResult:
        """
        Add a customer to the back of a queue.

        Raises:
            QueueNotFound, QueueInactive, QueueFull: the queue cannot take them
            UpstreamUnavailable: the ticket could not be stored
        """
        if not holder or not holder.strip():
            raise ValidationError("holder must not be empty", queue_id)

        await self._hydrate(queue_id)
        now = self.now()

        async with self.locks.hold(queue_id):
            ticket, change = self.ledger.join(queue_id, holder, now)
            position = self.ledger.position_of(queue_id, ticket.ticket_id)

        await self._commit(queue_id, change, "join")

        logger.info("Ticket %s joined queue %s at position %d", ticket.ticket_id, queue_id, position)
        return JoinResult(ticket_id=ticket.ticket_id, queue_id=queue_id, position=position)

    async def get_status(self, queue_id: str, ticket_id: str) -> StatusResult:
        """
        Position, ETA and status of a ticket.

        Tickets no longer in line report their last known position and an
        ETA of zero. A degraded ETA never fails the call.

        The ETA is noted on the in-memory ticket only; it is stored along
        with the ticket's next change, never from here.
        """
        await self._hydrate(queue_id)

        # Read synchronously from the book so no mutation can interleave
        ticket = self.ledger.find(ticket_id)
        if ticket is not None and ticket.queue_id == queue_id:
            position = self.ledger.position_of(queue_id, ticket_id)
            status = ticket.status
            estimate = await self.predictor.estimate(queue_id, position, self.now())
            self.ledger.record_eta(ticket_id, estimate.minutes)
            return StatusResult(
                ticket_id=ticket_id,
                queue_id=queue_id,
                position=position,
                estimated_wait_minutes=estimate.minutes,
                status=status,
            )

        stored = await self._store(self.repository.load_ticket(ticket_id), "load_ticket")
        if stored is None or stored.queue_id != queue_id:
            raise TicketNotFound(ticket_id)

        return StatusResult(
            ticket_id=ticket_id,
            queue_id=queue_id,
            position=stored.position or 0,
            estimated_wait_minutes=0,
            status=stored.status,
        )

    async def _leave(self, queue_id: str, ticket_id: str, target: TicketStatus) -> Ticket:
        await self._hydrate(queue_id)
        now = self.now()

        result = None
        async with self.locks.hold(queue_id):
            ticket = self.ledger.find(ticket_id)
            if ticket is not None and ticket.queue_id == queue_id:
                if target == TicketStatus.CANCELLED:
                    result = self.ledger.cancel(ticket_id, now)
                else:
                    result = self.ledger.expire(ticket_id, now)

        if result is None:
            stored = await self._store(self.repository.load_ticket(ticket_id), "load_ticket")
            if stored is None or stored.queue_id != queue_id:
                raise TicketNotFound(ticket_id)
            raise InvalidTransition(ticket_id, stored.status.value, target.value)

        ticket, change = result
        await self._commit(queue_id, change, target.value.lower())
        logger.info("Ticket %s in queue %s is now %s", ticket_id, queue_id, target.value)
        return ticket

    async def cancel_ticket(self, queue_id: str, ticket_id: str) -> Ticket:
        return await self._leave(queue_id, ticket_id, TicketStatus.CANCELLED)

    async def expire_ticket(self, queue_id: str, ticket_id: str) -> Ticket:
        return await self._leave(queue_id, ticket_id, TicketStatus.EXPIRED)

    # =========================================================================
    # Operator operations
    # =========================================================================

    async def process_next(self, queue_id: str, count: int = 1) -> ProcessResult:
        """
        Serve up to `count` customers from the front of the queue.

        Recording the service rate is a side effect: if the statistics
        store fails the customers are still reported as served.
        """
        if count < 1:
            raise ValidationError("count must be at least 1", queue_id)

        await self._hydrate(queue_id)
        now = self.now()

        async with self.locks.hold(queue_id):
            served, change = self.ledger.serve_next(queue_id, count, now)
            new_open_slots = change.queue.open_slots

        await self._commit(queue_id, change, "serve_next")
        served_count = len(served)
        logger.info("Processed %d customers for queue %s", served_count, queue_id)

        try:
            stats = await self.estimator.record_service(
                queue_id, served_count, self.measurement_window_seconds, now
            )
            await self._set_queue_rate(queue_id, stats.ema_service_rate)
        except UpstreamUnavailable as e:
            logger.warning("Could not record service stats for queue %s: %s", queue_id, e.message)

        await self._notify_upcoming(queue_id)

        return ProcessResult(
            queue_id=queue_id,
            served_count=served_count,
            new_open_slots=new_open_slots,
        )

    async def _notify_upcoming(self, queue_id: str) -> None:
        """Tell customers near the front, once, that their turn is coming."""
        if self.notify_ahead_positions <= 0:
            return

        now = self.now()
        pending = []
        async with self.locks.hold(queue_id):
            front = self.ledger.waiting(queue_id)[: self.notify_ahead_positions]
            for position, ticket in enumerate(front, start=1):
                if ticket.notification_count == 0:
                    _, change = self.ledger.mark_notified(ticket.ticket_id, now)
                    pending.append((ticket.ticket_id, position, change))

        if not pending:
            return

        name = self.ledger.queue(queue_id).name
        for ticket_id, position, change in pending:
            try:
                await self._commit(queue_id, change, "mark_notified")
            except UpstreamUnavailable:
                continue
            self.dispatcher.dispatch(
                ticket_id,
                f"Your turn at {name} is coming up soon: you are number {position} in line.",
            )

    async def notify_ticket(
        self,
        queue_id: str,
        ticket_id: str,
        channel: Optional[NotificationChannel] = None,
        address: Optional[str] = None,
        message: Optional[str] = None,
    ) -> NotificationResult:
        """
        Tell a waiting customer, on request, that their turn is near.

        The ticket is marked NOTIFIED and stored before the message is handed
        to the notifier; delivery itself is fire-and-forget. The address
        defaults to the ticket's holder.

        Raises:
            TicketNotFound: no such ticket in this queue
            InvalidTransition: the ticket has already left the line
            UpstreamUnavailable: the ticket could not be stored
        """
        await self._hydrate(queue_id)
        now = self.now()

        change = None
        async with self.locks.hold(queue_id):
            ticket = self.ledger.find(ticket_id)
            if ticket is not None and ticket.queue_id == queue_id:
                holder = ticket.holder
                _, change = self.ledger.mark_notified(ticket_id, now)

        if change is None:
            stored = await self._store(self.repository.load_ticket(ticket_id), "load_ticket")
            if stored is None or stored.queue_id != queue_id:
                raise TicketNotFound(ticket_id)
            raise InvalidTransition(ticket_id, stored.status.value, TicketStatus.NOTIFIED.value)

        await self._commit(queue_id, change, "notify")

        channel = channel or self.dispatcher.channel
        notification_id = str(uuid.uuid4())
        self.dispatcher.dispatch(
            ticket_id,
            message or DEFAULT_NOTIFY_MESSAGE,
            channel=channel,
            address=address or holder,
        )
        logger.info(
            "Notification %s scheduled for ticket %s via %s", notification_id, ticket_id, channel.value
        )
        return NotificationResult(
            notification_id=notification_id,
            ticket_id=ticket_id,
            channel=channel.value,
        )

    async def update_served_stats(
        self,
        queue_id: str,
        served_count: int,
        window_seconds: float,
    ) -> EtaStats:
        """
        Record a service report directly.

        Unknown queues are created on the fly with default capacity.
        """
        try:
            await self._hydrate(queue_id)
        except QueueNotFound:
            await self._create_lazily(queue_id)

        stats = await self.estimator.record_service(queue_id, served_count, window_seconds, self.now())
        await self._set_queue_rate(queue_id, stats.ema_service_rate)
        return stats

    async def _create_lazily(self, queue_id: str) -> None:
        now = self.now()
        queue = QueueRecord(
            queue_id=queue_id,
            name=queue_id,
            max_capacity=self.default_max_capacity,
            open_slots=self.default_max_capacity,
            created_at=now,
            updated_at=now,
        )
        await self._store(self.repository.save_queue(queue), "save_queue")
        self.ledger.install(queue, [])
        logger.info("Created queue %s from a stats update", queue_id)

    async def estimate_for_position(self, queue_id: str, position: int) -> EtaEstimate:
        await self._hydrate(queue_id)
        return await self.predictor.estimate(queue_id, position, self.now())

    async def latest_stats(self, queue_id: str) -> EtaStats:
        await self._hydrate(queue_id)
        return await self.estimator.latest_stats(queue_id, self.now())

    # =========================================================================
    # Queue administration
    # =========================================================================

    @staticmethod
    def _check_capacity(queue_id: str, max_capacity: int, open_slots: int) -> None:
        if max_capacity < 0:
            raise ValidationError("max_capacity must not be negative", queue_id)
        if not 0 <= open_slots <= max_capacity:
            raise ValidationError(
                f"open_slots must be between 0 and {max_capacity}", queue_id
            )

    async def create_queue(
        self,
        queue_id: str,
        name: str,
        max_capacity: int,
        open_slots: Optional[int] = None,
        is_active: bool = True,
    ) -> QueueRecord:
        if not queue_id or not queue_id.strip():
            raise ValidationError("queue_id must not be empty")
        if open_slots is None:
            open_slots = max_capacity
        self._check_capacity(queue_id, max_capacity, open_slots)

        if self.ledger.has_book(queue_id):
            raise QueueExists(queue_id)
        if await self._store(self.repository.load_queue(queue_id), "load_queue") is not None:
            raise QueueExists(queue_id)

        now = self.now()
        queue = QueueRecord(
            queue_id=queue_id,
            name=name,
            max_capacity=max_capacity,
            open_slots=open_slots,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        await self._store(self.repository.save_queue(queue), "save_queue")
        self.ledger.install(queue, [])
        logger.info("Created queue %s (%s)", queue_id, name)
        return queue.copy()

    async def get_queue(self, queue_id: str) -> QueueRecord:
        book = await self._hydrate(queue_id)
        return book.queue.copy()

    async def list_queues(self) -> list[QueueRecord]:
        stored = await self._store(self.repository.list_queues(), "list_queues")
        return [
            self.ledger.queue(q.queue_id).copy() if self.ledger.has_book(q.queue_id) else q
            for q in stored
        ]

    async def list_waiting(self, queue_id: str) -> list[Ticket]:
        """Waiting tickets, front of the line first, with current positions."""
        await self._hydrate(queue_id)
        tickets = []
        for position, ticket in enumerate(self.ledger.waiting(queue_id), start=1):
            snapshot = ticket.copy()
            snapshot.position = position
            tickets.append(snapshot)
        return tickets

    async def update_queue(
        self,
        queue_id: str,
        name: Optional[str] = None,
        max_capacity: Optional[int] = None,
        open_slots: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> QueueRecord:
        await self._hydrate(queue_id)

        async with self.locks.hold(queue_id):
            updated = self.ledger.queue(queue_id).copy()
            if name is not None:
                updated.name = name
            if max_capacity is not None:
                updated.max_capacity = max_capacity
                if open_slots is None:
                    updated.open_slots = max(0, min(updated.open_slots, max_capacity))
            if open_slots is not None:
                updated.open_slots = open_slots
            if is_active is not None:
                updated.is_active = is_active
            self._check_capacity(queue_id, updated.max_capacity, updated.open_slots)
            updated.updated_at = self.now()
            undo = self.ledger.replace_queue(updated)

        await self._commit(queue_id, LedgerChange(queue=updated.copy(), undo=undo), "update_queue")
        logger.info("Updated queue %s", queue_id)
        return updated.copy()

    async def delete_queue(self, queue_id: str) -> None:
        """Delete a queue; refused while customers are still waiting."""
        book = await self._hydrate(queue_id)

        async with self.locks.hold(queue_id):
            waiting = self.ledger.waiting_count(queue_id)
            if waiting:
                raise QueueNotEmpty(queue_id, waiting)
            self.ledger.forget(queue_id)

        try:
            await self._store(self.repository.delete_queue(queue_id), "delete_queue")
        except UpstreamUnavailable:
            async with self.locks.hold(queue_id):
                self.ledger.install(book.queue, list(book.waiting.values()))
            raise
        logger.info("Deleted queue %s", queue_id)

    async def close(self) -> None:
        await self.dispatcher.drain()
