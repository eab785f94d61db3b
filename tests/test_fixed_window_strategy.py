"""Unit tests for the fixed-window strategy."""

from unittest.mock import Mock

import pytest

from throttle.adapters.cache.in_memory import InMemoryCache
from throttle.adapters.rate_limit import FixedWindowStrategy


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=1000.0)


@pytest.fixture
def cache(clock: Mock) -> InMemoryCache:
    return InMemoryCache(clock=clock)


@pytest.fixture
def strategy(clock: Mock) -> FixedWindowStrategy:
    return FixedWindowStrategy(clock=clock)


def test_allows_up_to_limit_in_same_window(strategy, cache) -> None:
    results = [strategy.check_limit(cache, "ip:1.2.3.4", 3, 60) for _ in range(3)]

    assert all(r.allowed for r in results)
    assert [r.remaining for r in results] == [2, 1, 0]
    assert results[0].reset_time == 1020
    assert results[0].strategy == "fixed"
    assert results[0].key == "ip:1.2.3.4"


def test_blocks_when_over_limit(strategy, cache) -> None:
    for _ in range(2):
        assert strategy.check_limit(cache, "k", 2, 60).allowed is True

    blocked = strategy.check_limit(cache, "k", 2, 60)
    assert blocked.exceeded is True
    assert blocked.remaining == 0
    # Window is [960, 1020); now is 1000
    assert blocked.retry_after == 20
    assert blocked.reset_time == 1020


def test_resets_on_new_window(strategy, cache, clock) -> None:
    assert strategy.check_limit(cache, "k", 1, 10).allowed is True
    assert strategy.check_limit(cache, "k", 1, 10).allowed is False

    clock.return_value = 1010.0
    assert strategy.check_limit(cache, "k", 1, 10).allowed is True


def test_windows_are_aligned_to_wall_clock(strategy, clock) -> None:
    clock.return_value = 1234.5

    info = strategy.get_window_info(60)

    assert info == {"start": 1200, "end": 1260, "current": 1234, "remaining_seconds": 26}


def test_isolated_by_key(strategy, cache) -> None:
    assert strategy.check_limit(cache, "k1", 1, 60).allowed is True
    assert strategy.check_limit(cache, "k1", 1, 60).allowed is False

    assert strategy.check_limit(cache, "k2", 1, 60).allowed is True


def test_counter_key_layout_and_ttl(cache, clock) -> None:
    strategy = FixedWindowStrategy({"cache_prefix": "api", "ttl_buffer": 5}, clock=clock)

    strategy.check_limit(cache, "ip:1.2.3.4", 5, 60)

    counter_key = "api:fixed:ip:1.2.3.4:60:960"
    assert cache.get(counter_key) == 1

    # Counter created at t=1000 with TTL window + ttl_buffer
    clock.return_value = 1000.0 + 60 + 5
    assert cache.has(counter_key) is False


def test_get_usage_reports_current_count(strategy, cache) -> None:
    strategy.check_limit(cache, "k", 5, 60)
    strategy.check_limit(cache, "k", 5, 60)

    usage = strategy.get_usage(cache, "k", 60)

    assert usage["current_count"] == 2
    assert usage["window_start"] == 960
    assert usage["window_end"] == 1020
    assert usage["remaining_seconds"] == 20


def test_clear_limit_behaves_like_a_fresh_key(strategy, cache) -> None:
    for _ in range(3):
        strategy.check_limit(cache, "k", 3, 60)
    assert strategy.check_limit(cache, "k", 3, 60).exceeded is True

    assert strategy.clear_limit(cache, "k", 60) is True

    fresh = strategy.check_limit(cache, "k", 3, 60)
    assert fresh.allowed is True
    assert fresh.remaining == 2


def test_config_is_merged_over_defaults(clock) -> None:
    strategy = FixedWindowStrategy({"ttl_buffer": 10}, clock=clock)

    assert strategy.get_config() == {"cache_prefix": "rate_limit", "ttl_buffer": 10}

    strategy.set_config({"cache_prefix": "other"})
    assert strategy.get_config()["cache_prefix"] == "other"
    assert strategy.get_config()["ttl_buffer"] == 10


class InterleavingCache(InMemoryCache):
    """Runs ``interleave`` once, inside the first cache call made by a check."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.interleave = None

    def _run_interleave(self) -> None:
        interleave, self.interleave = self.interleave, None
        if interleave is not None:
            interleave()

    def has(self, key):
        self._run_interleave()
        return super().has(key)

    def put(self, key, value, ttl_seconds):
        self._run_interleave()
        return super().put(key, value, ttl_seconds)

    def increment(self, key, by=1, ttl_seconds=None):
        self._run_interleave()
        return super().increment(key, by, ttl_seconds=ttl_seconds)


def test_concurrent_first_hits_never_over_admit(strategy, clock) -> None:
    cache = InterleavingCache(clock=clock)
    results = []
    cache.interleave = lambda: results.append(strategy.check_limit(cache, "k", 1, 60))

    results.append(strategy.check_limit(cache, "k", 1, 60))

    assert [r.allowed for r in results] == [True, False]
    assert cache.get("rate_limit:fixed:k:60:960") == 2
