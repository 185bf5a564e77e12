"""
SQLAlchemy-backed repository.

Timestamps are stored as naive UTC and re-attached to UTC when loaded.
Any SQLAlchemy failure is reported as `UpstreamUnavailable` so the engine
can tell store outages apart from caller mistakes.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from smartqueue.database import create_session_maker, init_db
from smartqueue.domain import WAITING_STATUSES, EtaStats, QueueRecord, Ticket, TicketStatus
from smartqueue.exceptions import UpstreamUnavailable
from smartqueue.models import EtaStatsModel, QueueModel, TicketModel
from smartqueue.repositories.base import Repository
from smartqueue.utils.timezone import as_utc, to_utc

logger = logging.getLogger(__name__)


def _store_dt(dt: Optional[datetime]) -> Optional[datetime]:
    return to_utc(dt) if dt is not None else None


def _load_dt(dt: Optional[datetime]) -> Optional[datetime]:
    return as_utc(dt) if dt is not None else None


# =============================================================================
# Row <-> record mapping
# =============================================================================

def _queue_from_row(row: QueueModel) -> QueueRecord:
    return QueueRecord(
        queue_id=row.queue_id,
        name=row.name,
        max_capacity=row.max_capacity,
        open_slots=row.open_slots,
        is_active=row.is_active,
        service_rate_ema=row.service_rate_ema,
        created_at=_load_dt(row.created_at),
        updated_at=_load_dt(row.updated_at),
    )


def _queue_to_row(queue: QueueRecord) -> QueueModel:
    return QueueModel(
        queue_id=queue.queue_id,
        name=queue.name,
        max_capacity=queue.max_capacity,
        open_slots=queue.open_slots,
        is_active=queue.is_active,
        service_rate_ema=queue.service_rate_ema,
        created_at=_store_dt(queue.created_at),
        updated_at=_store_dt(queue.updated_at),
    )


def _ticket_from_row(row: TicketModel) -> Ticket:
    return Ticket(
        ticket_id=row.ticket_id,
        queue_id=row.queue_id,
        holder=row.holder,
        joined_at=_load_dt(row.joined_at),
        status=TicketStatus(row.status),
        position=row.position,
        last_notified_at=_load_dt(row.last_notified_at),
        notification_count=row.notification_count,
        last_eta_minutes=row.last_eta_minutes,
        status_changed_at=_load_dt(row.status_changed_at),
    )


def _ticket_to_row(ticket: Ticket) -> TicketModel:
    return TicketModel(
        ticket_id=ticket.ticket_id,
        queue_id=ticket.queue_id,
        holder=ticket.holder,
        joined_at=_store_dt(ticket.joined_at),
        status=ticket.status.value,
        position=ticket.position,
        last_notified_at=_store_dt(ticket.last_notified_at),
        notification_count=ticket.notification_count,
        last_eta_minutes=ticket.last_eta_minutes,
        status_changed_at=_store_dt(ticket.status_changed_at),
    )


def _stats_from_row(row: EtaStatsModel) -> EtaStats:
    return EtaStats(
        queue_id=row.queue_id,
        window_key=row.window_key,
        window_start=_load_dt(row.window_start),
        ema_service_rate=row.ema_service_rate,
        served_count=row.served_count,
        p50_wait_minutes=row.p50_wait_minutes,
        p90_wait_minutes=row.p90_wait_minutes,
        updated_at=_load_dt(row.updated_at),
    )


def _stats_to_row(stats: EtaStats) -> EtaStatsModel:
    return EtaStatsModel(
        queue_id=stats.queue_id,
        window_key=stats.window_key,
        window_start=_store_dt(stats.window_start),
        ema_service_rate=stats.ema_service_rate,
        served_count=stats.served_count,
        p50_wait_minutes=stats.p50_wait_minutes,
        p90_wait_minutes=stats.p90_wait_minutes,
        updated_at=_store_dt(stats.updated_at),
    )


# =============================================================================
# Repository
# =============================================================================

class SqlRepository(Repository):
    """Durable store on top of an async SQLAlchemy engine."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.engine = engine
        self.session_maker = session_maker or create_session_maker(engine)

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """
        Session that commits on success and rolls back on failure.
        Database errors are re-raised as UpstreamUnavailable.
        """
        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Database error during %s: %s", operation, e)
                raise UpstreamUnavailable(f"Store failed during {operation}") from e

    # --- Queues ---

    async def load_queue(self, queue_id: str) -> Optional[QueueRecord]:
        async with self._session("load_queue") as db:
            row = await db.get(QueueModel, queue_id)
            return _queue_from_row(row) if row else None

    async def save_queue(self, queue: QueueRecord) -> None:
        async with self._session("save_queue") as db:
            await db.merge(_queue_to_row(queue))

    async def delete_queue(self, queue_id: str) -> None:
        async with self._session("delete_queue") as db:
            await db.execute(delete(QueueModel).where(QueueModel.queue_id == queue_id))

    async def list_queues(self) -> list[QueueRecord]:
        async with self._session("list_queues") as db:
            result = await db.execute(select(QueueModel).order_by(QueueModel.queue_id))
            return [_queue_from_row(row) for row in result.scalars().all()]

    # --- Tickets ---

    async def load_ticket(self, ticket_id: str) -> Optional[Ticket]:
        async with self._session("load_ticket") as db:
            row = await db.get(TicketModel, ticket_id)
            return _ticket_from_row(row) if row else None

    async def save_ticket(self, ticket: Ticket) -> None:
        async with self._session("save_ticket") as db:
            await db.merge(_ticket_to_row(ticket))

    async def save_change(self, tickets: Iterable[Ticket], queue: Optional[QueueRecord]) -> None:
        async with self._session("save_change") as db:
            for ticket in tickets:
                await db.merge(_ticket_to_row(ticket))
            if queue is not None:
                await db.merge(_queue_to_row(queue))

    async def list_waiting_tickets(self, queue_id: str) -> list[Ticket]:
        async with self._session("list_waiting_tickets") as db:
            result = await db.execute(
                select(TicketModel).where(
                    TicketModel.queue_id == queue_id,
                    TicketModel.status.in_([s.value for s in WAITING_STATUSES]),
                )
            )
            return [_ticket_from_row(row) for row in result.scalars().all()]

    # --- Statistics ---

    async def load_stats(self, queue_id: str, window_key: str) -> Optional[EtaStats]:
        async with self._session("load_stats") as db:
            row = await db.get(EtaStatsModel, (queue_id, window_key))
            return _stats_from_row(row) if row else None

    async def save_stats(self, stats: EtaStats) -> None:
        async with self._session("save_stats") as db:
            await db.merge(_stats_to_row(stats))

    async def start(self) -> None:
        try:
            await init_db(self.engine)
        except SQLAlchemyError as e:
            raise UpstreamUnavailable("Could not initialize database") from e

    async def close(self) -> None:
        await self.engine.dispose()
