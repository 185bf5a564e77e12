"""
Time-window clock.

Maps a wall-clock instant to an hourly statistics window and to the
time-of-day categories the ETA predictor adjusts for. Everything here is a
pure function of the `now` it is given.

Intervals are start-inclusive and end-exclusive: 11:00 is no longer peak,
09:00 already is.
"""

from datetime import datetime, time

from smartqueue.utils.timezone import as_utc

WINDOW_KEY_FORMAT = "%Y-%m-%dT%H"

PEAK_HOURS = (
    (time(9, 0), time(11, 0)),
    (time(14, 0), time(16, 0)),
)
LUNCH_HOURS = (time(12, 0), time(13, 30))
EVENING_RUSH = (time(18, 0), time(20, 0))

# Monday=0 ... Sunday=6
DAY_OF_WEEK_FACTORS = {
    0: 1.15,  # Mondays are typically slower
    4: 1.10,
    5: 0.90,
    6: 0.90,
}


def _within(now: datetime, start: time, end: time) -> bool:
    wall = now.time().replace(tzinfo=None)
    return start <= wall < end


def window_start(now: datetime) -> datetime:
    """Start of the UTC hour bucket containing `now`."""
    return as_utc(now).replace(minute=0, second=0, microsecond=0)


def window_key(now: datetime) -> str:
    """
    Stable key for the hourly statistics window, e.g. "2024-05-14T10".

    Keys are always computed in UTC so that every process agrees on them.
    """
    return as_utc(now).strftime(WINDOW_KEY_FORMAT)


def is_peak_hour(now: datetime) -> bool:
    return any(_within(now, start, end) for start, end in PEAK_HOURS)


def is_lunch_hour(now: datetime) -> bool:
    return _within(now, *LUNCH_HOURS)


def is_evening_rush(now: datetime) -> bool:
    return _within(now, *EVENING_RUSH)


def is_weekend(now: datetime) -> bool:
    return now.weekday() >= 5


def day_of_week_factor(now: datetime) -> float:
    return DAY_OF_WEEK_FACTORS.get(now.weekday(), 1.0)
