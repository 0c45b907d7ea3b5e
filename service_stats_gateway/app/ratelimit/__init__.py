"""
Rate limiting package for the gate.

Holds the fixed-window limiter and the counter stores (in-process and Redis)
that enforce per-API-key hourly request budgets.
"""

from .fixed_window import (
    ONE_HOUR_MS,
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    RateLimitDecision,
    RateLimitStore,
    RedisRateLimitStore,
)

__all__ = [
    "ONE_HOUR_MS",
    "FixedWindowRateLimiter",
    "InMemoryRateLimitStore",
    "RateLimitDecision",
    "RateLimitStore",
    "RedisRateLimitStore",
]
