"""
Usage quotas and burst rate limiting.

The quota gate charges per-user, per-period usage atomically and
fails closed; the rate limiters throttle short request bursts.
"""

from tripweaver.quota.gate import (
    DEFAULT_TIER_LIMITS,
    QuotaDecision,
    QuotaGate,
    UsageSnapshot,
)
from tripweaver.quota.limiter import (
    FixedWindowLimiter,
    RateLimiter,
    RateLimitResult,
    SlidingWindowLimiter,
    create_rate_limiter,
)
from tripweaver.quota.periods import PeriodWindow, current_window
from tripweaver.quota.store import (
    InMemoryUsageStore,
    IncrementOutcome,
    RedisUsageStore,
    SqlUsageStore,
    UsageKey,
    UsageStore,
)

__all__ = [
    "DEFAULT_TIER_LIMITS",
    "FixedWindowLimiter",
    "InMemoryUsageStore",
    "IncrementOutcome",
    "PeriodWindow",
    "QuotaDecision",
    "QuotaGate",
    "RateLimitResult",
    "RateLimiter",
    "RedisUsageStore",
    "SlidingWindowLimiter",
    "SqlUsageStore",
    "UsageKey",
    "UsageSnapshot",
    "UsageStore",
    "create_rate_limiter",
    "current_window",
]
