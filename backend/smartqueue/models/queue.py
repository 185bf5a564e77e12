"""Queue model - a named waiting line customers can join."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from smartqueue.database import Base


class QueueModel(Base):
    """
    Persistent row for a queue.

    `open_slots` is the remaining waiting capacity; joins take a slot and
    serves/cancellations give it back.
    """

    __tablename__ = "queues"

    queue_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    open_slots: Mapped[int] = mapped_column(Integer, nullable=False)
    service_rate_ema: Mapped[float | None] = mapped_column(Float)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Queue {self.queue_id} ({self.open_slots}/{self.max_capacity})>"
