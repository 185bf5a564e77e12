"""EtaStats model - per-hour service statistics for a queue."""

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from smartqueue.database import Base


class EtaStatsModel(Base):
    """
    Service statistics for one queue within one hourly window.

    Keyed by (queue_id, window_key). Once the hour has passed the row is
    never updated again.
    """

    __tablename__ = "eta_stats"

    queue_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    window_key: Mapped[str] = mapped_column(String(13), primary_key=True)  # YYYY-MM-DDTHH
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Aggregated metrics
    served_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ema_service_rate: Mapped[float] = mapped_column(Float, nullable=False)
    p50_wait_minutes: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    p90_wait_minutes: Mapped[int] = mapped_column(Integer, default=10, nullable=False)

    # Last update
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<EtaStats {self.queue_id} {self.window_key}>"
