"""Ticket model - one customer's place in a queue."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from smartqueue.database import Base
from smartqueue.domain import TicketStatus


class TicketModel(Base):
    """
    Persistent row for a ticket.

    Tickets are kept after they leave the line (served, cancelled,
    expired) so `position` then holds the last known position.
    """

    __tablename__ = "tickets"

    ticket_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # No foreign key: tickets outlive their queue for audit
    queue_id: Mapped[str] = mapped_column(String(100), nullable=False)
    holder: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=TicketStatus.WAITING.value,
        nullable=False,
    )
    position: Mapped[int | None] = mapped_column(Integer)

    # Timing
    joined_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Notifications
    last_notified_at: Mapped[datetime | None] = mapped_column(DateTime)
    notification_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_eta_minutes: Mapped[int | None] = mapped_column(Integer)

    __table_args__ = (
        Index("idx_tickets_queue_status", "queue_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Ticket {self.ticket_id} - {self.status}>"
