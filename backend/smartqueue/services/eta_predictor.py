"""
ETA predictor.

Turns a position in line into a whole-minute wait estimate:

1. base rate from the service-rate estimator
2. time-of-day multipliers on the rate (peak, lunch, weekend, evening)
3. eta = position / rate
4. +10% for positions beyond 10
5. day-of-week factor
6. +5% reliability buffer
7. round up, at least one minute

When statistics cannot be read the predictor still answers, using a fixed
number of minutes per position.
"""

import logging
import math
from datetime import datetime

from smartqueue.domain import EtaEstimate
from smartqueue.exceptions import UpstreamUnavailable, ValidationError
from smartqueue.services import time_window
from smartqueue.services.service_rate import ServiceRateEstimator

logger = logging.getLogger(__name__)

PEAK_MULTIPLIER = 0.7  # slower service
LUNCH_MULTIPLIER = 0.5
WEEKEND_MULTIPLIER = 0.8
EVENING_MULTIPLIER = 1.2  # faster as people leave

LONG_QUEUE_POSITION = 10
LONG_QUEUE_BUFFER = 1.1
RELIABILITY_BUFFER = 1.05


class EtaPredictor:
    """Wait-time estimates from position, service rate and time of day."""

    def __init__(
        self,
        estimator: ServiceRateEstimator,
        *,
        min_rate: float = 0.1,
        fallback_minutes_per_position: int = 5,
        default_p50_minutes: int = 5,
        default_p90_minutes: int = 10,
    ):
        self.estimator = estimator
        self.min_rate = min_rate
        self.fallback_minutes_per_position = fallback_minutes_per_position
        self.default_p50_minutes = default_p50_minutes
        self.default_p90_minutes = default_p90_minutes

    def smart_service_rate(self, base_rate: float, now: datetime) -> float:
        """Base rate adjusted for the time-of-day categories `now` falls in."""
        multiplier = 1.0
        if time_window.is_peak_hour(now):
            multiplier *= PEAK_MULTIPLIER
        if time_window.is_lunch_hour(now):
            multiplier *= LUNCH_MULTIPLIER
        if time_window.is_weekend(now):
            multiplier *= WEEKEND_MULTIPLIER
        if time_window.is_evening_rush(now):
            multiplier *= EVENING_MULTIPLIER
        return max(self.min_rate, base_rate * multiplier)

    def minutes_for(self, position: int, smart_rate: float, now: datetime) -> int:
        eta = position / smart_rate

        if position > LONG_QUEUE_POSITION:
            eta *= LONG_QUEUE_BUFFER

        eta *= time_window.day_of_week_factor(now)
        eta *= RELIABILITY_BUFFER

        # Drop float noise so e.g. 6.000000000000001 does not round up to 7
        return max(1, math.ceil(round(eta, 9)))

    def fallback(self, position: int) -> EtaEstimate:
        return EtaEstimate(
            minutes=max(1, position * self.fallback_minutes_per_position),
            p50_minutes=self.default_p50_minutes,
            p90_minutes=self.default_p90_minutes,
            service_rate=self.estimator.default_rate,
            degraded=True,
        )

    async def estimate(self, queue_id: str, position: int, now: datetime) -> EtaEstimate:
        """
        Full estimate for a position in `queue_id` at time `now`.

        `now` should be in the queue site's local time; time-of-day rules use
        its wall clock.
        """
        if position < 1:
            raise ValidationError("position must be at least 1", queue_id)

        try:
            base_rate = await self.estimator.current_rate(queue_id, now)
            p50, p90 = await self.estimator.current_percentiles(queue_id, now)
        except UpstreamUnavailable as e:
            logger.warning(
                "Statistics unavailable for queue %s, using fallback ETA: %s",
                queue_id, e.message,
            )
            return self.fallback(position)

        smart_rate = self.smart_service_rate(base_rate, now)
        minutes = self.minutes_for(position, smart_rate, now)

        logger.debug(
            "ETA for queue %s position %d: %d min (base %.2f/min, smart %.2f/min, "
            "peak=%s lunch=%s weekend=%s evening=%s)",
            queue_id, position, minutes, base_rate, smart_rate,
            time_window.is_peak_hour(now), time_window.is_lunch_hour(now),
            time_window.is_weekend(now), time_window.is_evening_rush(now),
        )
        return EtaEstimate(
            minutes=minutes,
            p50_minutes=p50,
            p90_minutes=p90,
            service_rate=smart_rate,
        )

    async def predict(self, queue_id: str, position: int, now: datetime) -> int:
        """Estimated wait in whole minutes (at least 1)."""
        estimate = await self.estimate(queue_id, position, now)
        return estimate.minutes
