"""
Fixed-window rate limiting for outbound catalog traffic.

Buckets live in process memory only: they start empty, are never persisted
and are lost on restart. Keys follow "<operation>:<client identity>" so
search, product lookup and seeding are throttled independently.
"""

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional


@dataclass
class RateBucket:
    count: int
    reset_at: int  # epoch milliseconds


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: int  # epoch milliseconds

    def retry_after_ms(self, now_ms: int) -> int:
        return max(0, self.reset_at - now_ms)


def now_ms() -> int:
    return int(time.time() * 1000)


def rate_key(operation: str, client_identity: str) -> str:
    return f"{operation}:{client_identity}"


class RateLimiter:
    """
    Per-key fixed window counter.

    A bucket is created or reset when the current time is past its reset_at;
    within the window each call increments the count and calls are denied
    once the count has reached the limit.
    """

    def __init__(self, buckets: Optional[Dict[str, RateBucket]] = None,
                 clock: Callable[[], int] = now_ms):
        self.buckets = buckets if buckets is not None else {}
        self.clock = clock
        self._lock = Lock()

    def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        now = self.clock()
        with self._lock:
            bucket = self.buckets.get(key)
            if bucket is None or now > bucket.reset_at:
                bucket = RateBucket(count=1, reset_at=now + window_ms)
                self.buckets[key] = bucket
                return RateLimitResult(allowed=True, remaining=max(0, limit - 1),
                                       reset_at=bucket.reset_at)

            if bucket.count >= limit:
                return RateLimitResult(allowed=False, remaining=0, reset_at=bucket.reset_at)

            bucket.count += 1
            return RateLimitResult(allowed=True, remaining=max(0, limit - bucket.count),
                                   reset_at=bucket.reset_at)

    def reset(self) -> None:
        with self._lock:
            self.buckets.clear()


# Process-wide limiter shared by all routes
rate_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    """Dependency for FastAPI routes."""
    return rate_limiter
