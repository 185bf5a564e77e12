from datetime import datetime

import pytest
import pytz

from smartqueue.exceptions import ValidationError
from smartqueue.services.eta_predictor import EtaPredictor
from smartqueue.services.queue_locks import QueueLocks
from smartqueue.services.service_rate import ServiceRateEstimator

from conftest import TUESDAY_0800, TUESDAY_1030, FlakyRepository

MONDAY_0800 = datetime(2024, 5, 13, 8, 0, tzinfo=pytz.UTC)
SATURDAY_1230 = datetime(2024, 5, 18, 12, 30, tzinfo=pytz.UTC)
FRIDAY_1900 = datetime(2024, 5, 17, 19, 0, tzinfo=pytz.UTC)


@pytest.fixture
def repository():
    return FlakyRepository()


@pytest.fixture
def estimator(repository):
    return ServiceRateEstimator(repository, QueueLocks())


@pytest.fixture
def predictor(estimator):
    return EtaPredictor(estimator)


async def test_peak_hour_slows_service(predictor):
    # 5 / (1.0 * 0.7) * 1.05 = 7.5
    assert await predictor.predict("Q1", 5, TUESDAY_1030) == 8


async def test_weekend_lunch(predictor):
    # 2 / (1.0 * 0.5 * 0.8) * 0.9 * 1.05 = 4.725
    assert await predictor.predict("Q1", 2, SATURDAY_1230) == 5


async def test_long_queue_buffer(predictor):
    # 11 / 1.0 * 1.1 * 1.05 = 12.705
    assert await predictor.predict("Q1", 11, TUESDAY_0800) == 13


async def test_monday_factor(predictor):
    # 10 / 1.0 * 1.15 * 1.05 = 12.075
    assert await predictor.predict("Q1", 10, MONDAY_0800) == 13


async def test_evening_rush_speeds_service(predictor):
    # 6 / (1.0 * 1.2) * 1.10 * 1.05 = 5.775
    assert await predictor.predict("Q1", 6, FRIDAY_1900) == 6


async def test_exact_integer_is_not_rounded_up(predictor):
    # 6 / 1.05 * 1.05 is 6 up to float noise
    smart = predictor.smart_service_rate(1.05, TUESDAY_0800)
    assert predictor.minutes_for(6, smart, TUESDAY_0800) == 6


async def test_minimum_is_one_minute(estimator, predictor):
    await estimator.record_service("Q1", 60, 60, TUESDAY_0800)
    assert await predictor.predict("Q1", 1, TUESDAY_0800) == 1


async def test_uses_recorded_service_rate(estimator, predictor):
    await estimator.record_service("Q1", 2, 60, TUESDAY_0800)
    # 10 / 2.0 * 1.05 = 5.25
    assert await predictor.predict("Q1", 10, TUESDAY_0800) == 6


@pytest.mark.parametrize("now", [TUESDAY_0800, TUESDAY_1030, SATURDAY_1230, MONDAY_0800, FRIDAY_1900])
async def test_monotonic_in_position(predictor, now):
    etas = [await predictor.predict("Q1", position, now) for position in range(1, 40)]
    assert etas == sorted(etas)
    assert etas[0] >= 1


def test_smart_rate_is_floored(predictor):
    assert predictor.smart_service_rate(0.05, SATURDAY_1230) == 0.1


async def test_estimate_carries_percentiles(predictor):
    estimate = await predictor.estimate("Q1", 5, TUESDAY_1030)

    assert estimate.minutes == 8
    assert (estimate.p50_minutes, estimate.p90_minutes) == (5, 10)
    assert estimate.service_rate == pytest.approx(0.7)
    assert not estimate.degraded


async def test_falls_back_when_statistics_unavailable(repository, predictor):
    repository.failing.add("load_stats")

    estimate = await predictor.estimate("Q1", 5, TUESDAY_1030)

    assert estimate.minutes == 25
    assert estimate.degraded


async def test_rejects_non_positive_position(predictor):
    with pytest.raises(ValidationError):
        await predictor.predict("Q1", 0, TUESDAY_1030)
