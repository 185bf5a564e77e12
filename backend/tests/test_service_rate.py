from datetime import timedelta

import pytest

from smartqueue.exceptions import UpstreamUnavailable, ValidationError
from smartqueue.services.queue_locks import QueueLocks
from smartqueue.services.service_rate import ServiceRateEstimator
from smartqueue.services.time_window import window_key

from conftest import TUESDAY_1030, FlakyRepository


@pytest.fixture
def estimator(repository):
    return ServiceRateEstimator(repository, QueueLocks(timeout_seconds=1.0))


async def test_first_report_seeds_ema_with_raw_rate(estimator):
    stats = await estimator.record_service("Q1", 6, 60, TUESDAY_1030)

    assert stats.ema_service_rate == 6.0
    assert stats.served_count == 6
    assert stats.window_key == "2024-05-14T10"
    assert await estimator.current_rate("Q1", TUESDAY_1030) == 6.0


async def test_rate_is_per_minute(estimator):
    stats = await estimator.record_service("Q1", 3, 120, TUESDAY_1030)
    assert stats.ema_service_rate == pytest.approx(1.5)


async def test_ema_update_uses_alpha(estimator):
    await estimator.record_service("Q1", 6, 60, TUESDAY_1030)
    stats = await estimator.record_service("Q1", 2, 60, TUESDAY_1030)

    assert stats.ema_service_rate == pytest.approx(0.3 * 2 + 0.7 * 6)
    assert stats.served_count == 8


async def test_ema_stays_between_prior_and_new_rate(estimator):
    rates = [6, 1, 4, 4, 10, 2, 2, 7]
    await estimator.record_service("Q1", rates[0], 60, TUESDAY_1030)
    prior = rates[0]
    for rate in rates[1:]:
        stats = await estimator.record_service("Q1", rate, 60, TUESDAY_1030)
        assert min(prior, rate) <= stats.ema_service_rate <= max(prior, rate)
        prior = stats.ema_service_rate


async def test_ema_converges_to_constant_stream(estimator):
    await estimator.record_service("Q1", 6, 60, TUESDAY_1030)
    for _ in range(60):
        stats = await estimator.record_service("Q1", 2, 60, TUESDAY_1030)
    assert stats.ema_service_rate == pytest.approx(2.0, abs=1e-6)


async def test_new_window_reseeds(estimator):
    await estimator.record_service("Q1", 6, 60, TUESDAY_1030)
    next_hour = TUESDAY_1030 + timedelta(hours=1)

    stats = await estimator.record_service("Q1", 2, 60, next_hour)

    assert stats.window_key == "2024-05-14T11"
    assert stats.ema_service_rate == 2.0
    assert stats.served_count == 2


async def test_carry_forward_seeds_from_previous_window(repository):
    estimator = ServiceRateEstimator(repository, QueueLocks(), carry_forward=True)
    await estimator.record_service("Q1", 6, 60, TUESDAY_1030)

    stats = await estimator.record_service("Q1", 2, 60, TUESDAY_1030 + timedelta(hours=1))

    assert stats.ema_service_rate == pytest.approx(0.3 * 2 + 0.7 * 6)


async def test_defaults_without_statistics(estimator):
    assert await estimator.current_rate("unknown", TUESDAY_1030) == 1.0
    assert await estimator.current_percentiles("unknown", TUESDAY_1030) == (5, 10)

    stats = await estimator.latest_stats("unknown", TUESDAY_1030)
    assert stats.served_count == 0
    assert stats.ema_service_rate == 1.0


async def test_rate_never_drops_below_floor(repository):
    estimator = ServiceRateEstimator(repository, QueueLocks(), default_rate=0.01, min_rate=0.1)
    assert await estimator.current_rate("Q1", TUESDAY_1030) == 0.1

    stats = await estimator.record_service("Q1", 0, 60, TUESDAY_1030)
    assert stats.ema_service_rate == 0.1


async def test_stats_are_persisted_per_window(estimator, repository):
    await estimator.record_service("Q1", 4, 60, TUESDAY_1030)

    stored = await repository.load_stats("Q1", window_key(TUESDAY_1030))
    assert stored.ema_service_rate == 4.0
    assert stored.primary_key == "Q1#2024-05-14T10"


async def test_reads_stats_written_by_another_process(repository):
    writer = ServiceRateEstimator(repository, QueueLocks())
    await writer.record_service("Q1", 3, 60, TUESDAY_1030)

    reader = ServiceRateEstimator(repository, QueueLocks())
    assert await reader.current_rate("Q1", TUESDAY_1030) == 3.0


@pytest.mark.parametrize("count,window", [(-1, 60), (1, 0), (1, -30)])
async def test_rejects_bad_reports(estimator, count, window):
    with pytest.raises(ValidationError):
        await estimator.record_service("Q1", count, window, TUESDAY_1030)


def test_rejects_bad_alpha(repository):
    with pytest.raises(ValidationError):
        ServiceRateEstimator(repository, QueueLocks(), alpha=0)


async def test_failed_save_is_reported_and_rolled_back():
    repository = FlakyRepository()
    estimator = ServiceRateEstimator(repository, QueueLocks())
    await estimator.record_service("Q1", 6, 60, TUESDAY_1030)

    repository.failing.add("save_stats")
    with pytest.raises(UpstreamUnavailable):
        await estimator.record_service("Q1", 1, 60, TUESDAY_1030)

    assert await estimator.current_rate("Q1", TUESDAY_1030) == 6.0


async def test_failed_load_surfaces_as_upstream_unavailable():
    repository = FlakyRepository()
    repository.failing.add("load_stats")
    estimator = ServiceRateEstimator(repository, QueueLocks())

    with pytest.raises(UpstreamUnavailable):
        await estimator.current_rate("Q1", TUESDAY_1030)
