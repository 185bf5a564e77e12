"""
Domain records shared by the engine and the repositories.

These are plain dataclasses; the SQL store maps them onto the ORM rows
in `smartqueue.models`.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from smartqueue.utils.timezone import utc_now


class TicketStatus(str, Enum):
    """Lifecycle states of a ticket."""
    WAITING = "WAITING"
    NOTIFIED = "NOTIFIED"  # still waiting, has been told their turn is near
    SERVED = "SERVED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


# Statuses that hold a place in line
WAITING_STATUSES = frozenset({TicketStatus.WAITING, TicketStatus.NOTIFIED})


def generate_ticket_id() -> str:
    return str(uuid.uuid4())


@dataclass
class QueueRecord:
    """A named waiting line."""

    queue_id: str
    name: str
    max_capacity: int
    open_slots: int
    is_active: bool = True
    service_rate_ema: Optional[float] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def copy(self) -> "QueueRecord":
        return replace(self)


@dataclass
class Ticket:
    """A customer's place in a queue."""

    ticket_id: str
    queue_id: str
    holder: str
    joined_at: datetime
    status: TicketStatus = TicketStatus.WAITING
    position: Optional[int] = None  # last known position
    last_notified_at: Optional[datetime] = None
    notification_count: int = 0
    last_eta_minutes: Optional[int] = None
    status_changed_at: Optional[datetime] = None

    @property
    def is_waiting(self) -> bool:
        return self.status in WAITING_STATUSES

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Join order; equal timestamps fall back to ticket ID."""
        return (self.joined_at, self.ticket_id)

    def copy(self) -> "Ticket":
        return replace(self)


@dataclass
class EtaStats:
    """Service statistics for one queue in one hourly window."""

    queue_id: str
    window_key: str
    window_start: datetime
    ema_service_rate: float
    served_count: int = 0
    p50_wait_minutes: int = 5
    p90_wait_minutes: int = 10
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def primary_key(self) -> str:
        return f"{self.queue_id}#{self.window_key}"

    def copy(self) -> "EtaStats":
        return replace(self)


@dataclass(frozen=True)
class EtaEstimate:
    """Result of an ETA prediction."""

    minutes: int
    p50_minutes: int
    p90_minutes: int
    service_rate: float
    degraded: bool = False


@dataclass(frozen=True)
class JoinResult:
    ticket_id: str
    queue_id: str
    position: int


@dataclass(frozen=True)
class StatusResult:
    ticket_id: str
    queue_id: str
    position: int
    estimated_wait_minutes: int
    status: TicketStatus


@dataclass(frozen=True)
class ProcessResult:
    queue_id: str
    served_count: int
    new_open_slots: int


@dataclass(frozen=True)
class NotificationResult:
    notification_id: str
    ticket_id: str
    channel: str
    scheduled: bool = True
