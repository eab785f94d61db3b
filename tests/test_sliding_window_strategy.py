"""Unit tests for the sliding-window strategy."""

from unittest.mock import Mock

import pytest

from throttle.adapters.cache.in_memory import InMemoryCache
from throttle.adapters.rate_limit import SlidingWindowStrategy


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=1000.0)


@pytest.fixture
def cache(clock: Mock) -> InMemoryCache:
    return InMemoryCache(clock=clock)


@pytest.fixture
def strategy(clock: Mock) -> SlidingWindowStrategy:
    return SlidingWindowStrategy(clock=clock)


def test_allows_exactly_limit_then_blocks(strategy, cache) -> None:
    results = [strategy.check_limit(cache, "k", 3, 60) for _ in range(3)]

    assert all(r.allowed for r in results)
    assert [r.remaining for r in results] == [2, 1, 0]

    blocked = strategy.check_limit(cache, "k", 3, 60)
    assert blocked.exceeded is True
    assert blocked.remaining == 0
    assert blocked.retry_after == 60
    assert blocked.reset_time == 1060


def test_retry_after_counts_down_from_oldest_request(strategy, cache, clock) -> None:
    for _ in range(2):
        strategy.check_limit(cache, "k", 2, 60)

    clock.return_value = 1030.0
    blocked = strategy.check_limit(cache, "k", 2, 60)

    assert blocked.exceeded is True
    assert blocked.retry_after == 30


def test_entries_older_than_window_are_not_counted(strategy, cache, clock) -> None:
    for ts in (1000.0, 1010.0, 1020.0):
        clock.return_value = ts
        assert strategy.check_limit(cache, "k", 3, 60).allowed is True

    clock.return_value = 1065.0
    usage = strategy.get_usage(cache, "k", 60)
    assert usage["current_count"] == 2
    assert usage["total_stored_timestamps"] == 3
    assert usage["oldest_request"] == 1010.0

    result = strategy.check_limit(cache, "k", 3, 60)
    assert result.allowed is True
    assert result.remaining == 0
    assert result.reset_time == 1070


def test_entry_exactly_at_window_start_still_counts(strategy, cache, clock) -> None:
    strategy.check_limit(cache, "k", 1, 60)

    clock.return_value = 1060.0
    blocked = strategy.check_limit(cache, "k", 1, 60)

    assert blocked.exceeded is True
    assert blocked.retry_after == 1


def test_no_burst_at_window_boundary(strategy, cache, clock) -> None:
    clock.return_value = 1059.0
    for _ in range(2):
        strategy.check_limit(cache, "k", 2, 60)

    # A fixed window would reset at 1080; the sliding window still remembers
    clock.return_value = 1081.0
    assert strategy.check_limit(cache, "k", 2, 60).exceeded is True


def test_clear_limit_behaves_like_a_fresh_key(strategy, cache) -> None:
    strategy.check_limit(cache, "k", 1, 60)
    assert strategy.check_limit(cache, "k", 1, 60).exceeded is True

    assert strategy.clear_limit(cache, "k", 60) is True

    fresh = strategy.check_limit(cache, "k", 1, 60)
    assert fresh.allowed is True
    assert fresh.remaining == 0


def test_stacked_windows_keep_separate_logs(strategy, cache, clock) -> None:
    assert strategy.check_limit(cache, "k", 1, 1).allowed is True
    assert strategy.check_limit(cache, "k", 5, 3600).allowed is True

    clock.return_value = 1002.0
    assert strategy.check_limit(cache, "k", 1, 1).allowed is True
    assert strategy.get_usage(cache, "k", 3600)["current_count"] == 1


def test_default_config_includes_timestamp_cap(strategy) -> None:
    config = strategy.get_default_config()

    assert config["max_timestamps"] == 1000
    assert config["cache_prefix"] == "rate_limit"


def test_get_window_info(strategy) -> None:
    assert strategy.get_window_info(60) == {
        "start": 940,
        "end": 1000,
        "current": 1000,
        "window_size_seconds": 60,
    }


def test_max_timestamps_cap_drops_oldest_in_window_entries(cache, clock) -> None:
    strategy = SlidingWindowStrategy({"max_timestamps": 2}, clock=clock)

    for offset in range(4):
        clock.return_value = 1000.0 + offset
        assert strategy.check_limit(cache, "k", 5, 60).allowed is True

    usage = strategy.get_usage(cache, "k", 60)
    assert usage["total_stored_timestamps"] == 2
    assert usage["oldest_request"] == 1002.0
    assert usage["newest_request"] == 1003.0
