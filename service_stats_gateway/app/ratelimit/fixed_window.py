"""
Fixed-window rate limiter for Stats API keys.

Each API key gets a counter per window bucket, where the bucket is the
wall-clock time in milliseconds divided by the window length. The counter
store performs check-and-increment atomically per key, so concurrent requests
for one key can never both take the last slot, while different keys never
contend with each other.
"""

import itertools
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import RateLimitStoreError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

ONE_HOUR_MS = 60 * 60 * 1000


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single rate limit check."""
    allowed: bool
    limit: int
    count: int
    reset_in_seconds: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class RateLimitStore(Protocol):
    """Counter store contract required by the limiter."""

    async def hit(self, key: str, bucket: int, window_ms: int, ceiling: int) -> Tuple[bool, int]:
        """Increment ``key`` in ``bucket`` unless it already reached ``ceiling``.

        Returns ``(allowed, count)`` where ``count`` is the number of requests
        accepted in the bucket after this call.
        """
        ...


@dataclass
class _RateWindow:
    lock: threading.Lock = field(default_factory=threading.Lock)
    bucket: int = -1
    count: int = 0
    ends_at_ms: int = 0
    retired: bool = False


class InMemoryRateLimitStore:
    """Process-local counter store.

    Every key owns its window and that window's lock. Stale windows are reset
    lazily when a request lands in a newer bucket and dropped by a sweep that
    runs every ``sweep_interval`` hits.
    """

    def __init__(self, sweep_interval: int = 1024):
        self.sweep_interval = sweep_interval
        self.logger = get_logger("gateway.rate_limit_store")
        self._windows: Dict[str, _RateWindow] = {}
        self._hits = itertools.count(1)

    def __len__(self) -> int:
        return len(self._windows)

    async def hit(self, key: str, bucket: int, window_ms: int, ceiling: int) -> Tuple[bool, int]:
        result = self._hit(key, bucket, window_ms, ceiling)
        if self.sweep_interval and next(self._hits) % self.sweep_interval == 0:
            self.sweep(bucket * window_ms)
        return result

    def _hit(self, key: str, bucket: int, window_ms: int, ceiling: int) -> Tuple[bool, int]:
        while True:
            window = self._windows.get(key)
            if window is None:
                window = self._windows.setdefault(key, _RateWindow())

            with window.lock:
                # A sweep removed this window after we looked it up
                if window.retired:
                    continue

                if bucket > window.bucket:
                    window.bucket = bucket
                    window.count = 0
                    window.ends_at_ms = (bucket + 1) * window_ms

                if window.count >= ceiling:
                    return False, window.count

                window.count += 1
                return True, window.count

    def sweep(self, now_ms: int) -> int:
        """Drop windows that ended at or before ``now_ms``."""
        removed = 0
        for key, window in list(self._windows.items()):
            with window.lock:
                if window.retired or window.ends_at_ms > now_ms:
                    continue
                window.retired = True
                self._windows.pop(key, None)
                removed += 1

        if removed:
            self.logger.debug("Rate limit windows evicted", removed=removed, remaining=len(self._windows))
        return removed


# Reads, compares and increments in one server-side step
_HIT_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local ceiling = tonumber(ARGV[1])
if current >= ceiling then
    return {0, current}
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return {1, current}
"""


class RedisRateLimitStore:
    """Distributed counter store backed by Redis."""

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.logger = get_logger("gateway.rate_limit_store")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _make_key(self, key: str, bucket: int) -> str:
        return f"{key}:{bucket}"

    async def hit(self, key: str, bucket: int, window_ms: int, ceiling: int) -> Tuple[bool, int]:
        try:
            redis_client = await self._get_redis()
            allowed, count = await redis_client.eval(
                _HIT_SCRIPT, 1, self._make_key(key, bucket), ceiling, window_ms
            )
        except (RedisError, OSError) as e:
            self.logger.error("Rate limit store error", key=key, error=str(e))
            raise RateLimitStoreError(details={"error": str(e)}) from e

        return bool(int(allowed)), int(count)

    async def ping(self) -> bool:
        redis_client = await self._get_redis()
        return bool(await redis_client.ping())

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class FixedWindowRateLimiter:
    """Per-key fixed-window limiter with a per-call ceiling."""

    def __init__(self, store: RateLimitStore, clock: Callable[[], float] = time.time,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("gateway.rate_limiter")

    def _make_key(self, credential_id: str) -> str:
        """Generate rate limit key."""
        return f"api_request:{credential_id}"

    async def check(self, credential_id: str, window_ms: int, ceiling: int) -> RateLimitDecision:
        """Count one request for ``credential_id`` and decide whether it fits."""
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if ceiling <= 0:
            raise ValueError("ceiling must be positive")

        now_ms = int(self.clock() * 1000)
        bucket = now_ms // window_ms
        allowed, count = await self.store.hit(self._make_key(credential_id), bucket, window_ms, ceiling)
        reset_in_seconds = math.ceil(((bucket + 1) * window_ms - now_ms) / 1000)

        if self.metrics is not None:
            self.metrics.record_rate_limit_check(allowed)

        if not allowed:
            self.logger.warning(
                "Rate limit exceeded",
                credential_id=credential_id,
                current_count=count,
                limit=ceiling,
                reset_in_seconds=reset_in_seconds
            )

        return RateLimitDecision(
            allowed=allowed,
            limit=ceiling,
            count=count,
            reset_in_seconds=reset_in_seconds
        )
