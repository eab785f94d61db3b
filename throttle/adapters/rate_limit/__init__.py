"""Rate limiting strategies.

Each strategy keeps its per-key state in a cache store handed to it on every
call, so instances are stateless and safe to share across requests.
"""

from throttle.adapters.rate_limit.base import RateLimitResult, RateLimitStrategy
from throttle.adapters.rate_limit.fixed_window import FixedWindowStrategy
from throttle.adapters.rate_limit.sliding_window import SlidingWindowStrategy
from throttle.adapters.rate_limit.token_bucket import TokenBucketStrategy

__all__ = [
    "RateLimitResult",
    "RateLimitStrategy",
    "FixedWindowStrategy",
    "SlidingWindowStrategy",
    "TokenBucketStrategy",
]
