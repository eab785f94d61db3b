"""Unit tests for the token bucket strategy.

Buckets use limit=5 / window=10 (0.5 tokens per second) so the refill math
stays exact in floating point.
"""

from unittest.mock import Mock

import pytest

from throttle.adapters.cache.in_memory import InMemoryCache
from throttle.adapters.rate_limit import TokenBucketStrategy


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=1000.0)


@pytest.fixture
def cache(clock: Mock) -> InMemoryCache:
    return InMemoryCache(clock=clock)


def test_fresh_bucket_starts_empty(cache, clock) -> None:
    strategy = TokenBucketStrategy(clock=clock)

    result = strategy.check_limit(cache, "k", 5, 10)

    assert result.exceeded is True
    assert result.remaining == 0
    assert result.retry_after == 2
    assert result.reset_time == 1002


def test_tokens_accrue_after_cold_start(cache, clock) -> None:
    strategy = TokenBucketStrategy(clock=clock)
    strategy.check_limit(cache, "k", 5, 10)

    clock.return_value = 1001.0
    partial = strategy.check_limit(cache, "k", 5, 10)
    assert partial.exceeded is True
    assert partial.retry_after == 1

    clock.return_value = 1002.0
    allowed = strategy.check_limit(cache, "k", 5, 10)
    assert allowed.allowed is True
    assert allowed.remaining == 0
    assert allowed.reset_time == 1012


def test_initial_tokens_allow_a_burst_of_that_size(cache, clock) -> None:
    strategy = TokenBucketStrategy({"initial_tokens": 3}, clock=clock)

    results = [strategy.check_limit(cache, "k", 5, 10) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]


def test_initial_tokens_are_capped_at_capacity(cache, clock) -> None:
    strategy = TokenBucketStrategy({"initial_tokens": 50}, clock=clock)

    first = strategy.check_limit(cache, "k", 5, 10)

    assert first.allowed is True
    assert first.remaining == 4


def test_refill_never_exceeds_capacity(cache, clock) -> None:
    strategy = TokenBucketStrategy({"initial_tokens": 5}, clock=clock)
    strategy.check_limit(cache, "k", 5, 10)

    clock.return_value = 1000.0 + 1_000
    result = strategy.check_limit(cache, "k", 5, 10)

    assert result.allowed is True
    assert result.remaining == 4


def test_zero_capacity_is_always_exceeded(cache, clock) -> None:
    strategy = TokenBucketStrategy({"initial_tokens": 10}, clock=clock)

    result = strategy.check_limit(cache, "k", 0, 60)

    assert result.exceeded is True
    assert result.limit == 0
    assert result.remaining == 0
    assert result.retry_after == 60


def test_reset_bucket_fills_to_capacity(cache, clock) -> None:
    strategy = TokenBucketStrategy(clock=clock)

    assert strategy.reset_bucket(cache, "k", 5, 10) is True

    result = strategy.check_limit(cache, "k", 5, 10)
    assert result.allowed is True
    assert result.remaining == 4


def test_state_is_stored_with_capacity(cache, clock) -> None:
    strategy = TokenBucketStrategy({"initial_tokens": 3}, clock=clock)
    strategy.check_limit(cache, "ip:1.2.3.4", 5, 10)

    assert cache.get("rate_limit:token_bucket:ip:1.2.3.4:10") == {
        "tokens": 2.0,
        "last_refill": 1000.0,
        "capacity": 5,
    }


def test_get_usage_reads_bucket_without_consuming(cache, clock) -> None:
    strategy = TokenBucketStrategy({"initial_tokens": 3}, clock=clock)
    strategy.check_limit(cache, "k", 5, 10)

    usage = strategy.get_usage(cache, "k", 10)

    assert usage["current_tokens"] == 2.0
    assert usage["bucket_capacity"] == 5
    assert usage["refill_rate"] == 0.5
    assert usage["time_to_full_bucket"] == 6.0
    assert usage["next_token_in_seconds"] == 0.0
    assert strategy.get_usage(cache, "k", 10)["current_tokens"] == 2.0


def test_clear_limit_behaves_like_a_fresh_key(cache, clock) -> None:
    strategy = TokenBucketStrategy({"initial_tokens": 2}, clock=clock)
    for _ in range(2):
        strategy.check_limit(cache, "k", 5, 10)
    assert strategy.check_limit(cache, "k", 5, 10).exceeded is True

    assert strategy.clear_limit(cache, "k", 10) is True

    fresh = strategy.check_limit(cache, "k", 5, 10)
    assert fresh.allowed is True
    assert fresh.remaining == 1


def test_remaining_stays_within_bounds(cache, clock) -> None:
    strategy = TokenBucketStrategy({"initial_tokens": 5}, clock=clock)

    for step in range(20):
        clock.return_value = 1000.0 + step * 0.5
        result = strategy.check_limit(cache, "k", 5, 10)
        assert 0 <= result.remaining <= result.limit


def test_window_info_describes_refill(clock) -> None:
    strategy = TokenBucketStrategy(clock=clock)

    assert strategy.get_window_info(10) == {
        "refill_period": 10,
        "current_time": 1000,
        "tokens_per_second": 0.1,
    }
