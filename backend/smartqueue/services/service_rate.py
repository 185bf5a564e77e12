"""
Service-rate estimator.

Tracks an exponential moving average of customers served per minute for
each queue, one average per hourly window:

    new_ema = alpha * rate + (1 - alpha) * old_ema

The first report in a window seeds the average with the raw rate. With
`carry_forward` enabled the previous hour's average seeds it instead, which
gives smoother behaviour across the hour boundary.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from smartqueue.domain import EtaStats
from smartqueue.exceptions import UpstreamUnavailable, ValidationError
from smartqueue.repositories.base import Repository
from smartqueue.services.queue_locks import QueueLocks
from smartqueue.services.time_window import window_key, window_start
from smartqueue.utils.bounded import bounded

logger = logging.getLogger(__name__)


class ServiceRateEstimator:
    """Sole owner of EtaStats records."""

    def __init__(
        self,
        repository: Repository,
        locks: QueueLocks,
        *,
        alpha: float = 0.3,
        default_rate: float = 1.0,
        min_rate: float = 0.1,
        default_p50_minutes: int = 5,
        default_p90_minutes: int = 10,
        carry_forward: bool = False,
        store_timeout_seconds: float = 5.0,
    ):
        if not 0 < alpha <= 1:
            raise ValidationError(f"alpha must be in (0, 1], got {alpha}")
        self.repository = repository
        self.locks = locks
        self.alpha = alpha
        self.default_rate = default_rate
        self.min_rate = min_rate
        self.default_p50_minutes = default_p50_minutes
        self.default_p90_minutes = default_p90_minutes
        self.carry_forward = carry_forward
        self.store_timeout_seconds = store_timeout_seconds

        # Latest known window per queue
        self._current: dict[str, EtaStats] = {}

    # -------------------- lookups --------------------

    async def _load(self, queue_id: str, key: str) -> Optional[EtaStats]:
        cached = self._current.get(queue_id)
        if cached is not None and cached.window_key == key:
            return cached

        stats = await bounded(
            self.repository.load_stats(queue_id, key),
            self.store_timeout_seconds,
            "load_stats",
        )
        if stats is not None:
            # Re-read after the await: a concurrent update may have landed
            cached = self._current.get(queue_id)
            if cached is None or cached.window_key < key:
                self._current[queue_id] = stats
            elif cached.window_key == key:
                return cached
        return stats

    def _floor(self, rate: float) -> float:
        return max(self.min_rate, rate)

    async def current_rate(self, queue_id: str, now: datetime) -> float:
        """
        Smoothed service rate (customers/minute) for the current window.

        Falls back to the default rate when the window has no statistics.
        Never returns less than the configured floor.

        Raises:
            UpstreamUnavailable: the statistics store failed
        """
        stats = await self._load(queue_id, window_key(now))
        if stats is None:
            return self._floor(self.default_rate)
        return self._floor(stats.ema_service_rate)

    async def current_percentiles(self, queue_id: str, now: datetime) -> tuple[int, int]:
        """Stored (p50, p90) wait estimates in minutes."""
        stats = await self._load(queue_id, window_key(now))
        if stats is None:
            return self.default_p50_minutes, self.default_p90_minutes
        return stats.p50_wait_minutes, stats.p90_wait_minutes

    async def latest_stats(self, queue_id: str, now: datetime) -> EtaStats:
        """Current window's record, or a defaulted one if nothing was recorded."""
        key = window_key(now)
        stats = await self._load(queue_id, key)
        if stats is not None:
            return stats.copy()
        return EtaStats(
            queue_id=queue_id,
            window_key=key,
            window_start=window_start(now),
            ema_service_rate=self._floor(self.default_rate),
            served_count=0,
            p50_wait_minutes=self.default_p50_minutes,
            p90_wait_minutes=self.default_p90_minutes,
            updated_at=now,
        )

    # -------------------- updates --------------------

    def smooth(self, previous_ema: Optional[float], rate: float) -> float:
        """One EMA step; a missing previous value seeds with `rate`."""
        if previous_ema is None:
            return self._floor(rate)
        return self._floor(self.alpha * rate + (1 - self.alpha) * previous_ema)

    async def record_service(
        self,
        queue_id: str,
        served_count: int,
        window_seconds: float,
        now: datetime,
    ) -> EtaStats:
        """
        Fold a service report into the current window's average.

        Args:
            queue_id: Queue the customers were served from
            served_count: Customers served during the measurement window
            window_seconds: Length of the measurement window
            now: Time of the report

        Returns:
            The updated statistics record

        Raises:
            ValidationError: negative count or non-positive window
            UpstreamUnavailable: the statistics store failed
        """
        if served_count < 0:
            raise ValidationError("served_count must not be negative", queue_id)
        if window_seconds <= 0:
            raise ValidationError("window_seconds must be positive", queue_id)

        rate = served_count / (window_seconds / 60.0)
        key = window_key(now)

        # Store reads happen before taking the lock
        existing = await self._load(queue_id, key)
        seed = None
        if existing is None and self.carry_forward:
            seed = await self._load(queue_id, window_key(now - timedelta(hours=1)))

        async with self.locks.hold(queue_id):
            previous = self._current.get(queue_id)
            if previous is not None and previous.window_key == key:
                existing = previous

            if existing is not None:
                updated = existing.copy()
                updated.ema_service_rate = self.smooth(existing.ema_service_rate, rate)
                updated.served_count = existing.served_count + served_count
            else:
                seed_ema = seed.ema_service_rate if seed is not None else None
                updated = EtaStats(
                    queue_id=queue_id,
                    window_key=key,
                    window_start=window_start(now),
                    ema_service_rate=self.smooth(seed_ema, rate),
                    served_count=served_count,
                    p50_wait_minutes=self.default_p50_minutes,
                    p90_wait_minutes=self.default_p90_minutes,
                )
            updated.updated_at = now
            self._current[queue_id] = updated

        try:
            await bounded(
                self.repository.save_stats(updated.copy()),
                self.store_timeout_seconds,
                "save_stats",
            )
        except UpstreamUnavailable:
            async with self.locks.hold(queue_id):
                if self._current.get(queue_id) is updated:
                    if previous is not None:
                        self._current[queue_id] = previous
                    else:
                        self._current.pop(queue_id, None)
            raise

        logger.info(
            "Service stats updated for queue %s: served=%d rate=%.2f/min ema=%.2f/min window=%s",
            queue_id, served_count, rate, updated.ema_service_rate, key,
        )
        return updated.copy()
