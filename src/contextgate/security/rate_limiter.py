"""In-memory rate limiters.

Two flavours:
  - ``RateLimiter``:       token bucket keyed by a single string (caller IP),
                           used to throttle the unauthenticated OAuth endpoints.
  - ``WindowRateLimiter``: fixed-window counters keyed by
                           (client_id, user_id, endpoint), one counter per
                           configured window (defaults: 60/min, 1000/h,
                           10000/day). Used on every protected resource call.

Both are thread-safe.  ``WindowRateLimiter.allow()`` fails closed: any error
while evaluating a window denies the request.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable

__all__ = [
    "RateLimiter",
    "RateLimitInfo",
    "Window",
    "WindowRateLimiter",
    "auth_limiter",
    "get_window_limiter",
    "cleanup_all",
]

logger = logging.getLogger(__name__)


class _Bucket:
    """A single token bucket for one caller."""

    __slots__ = ("tokens", "last_refill")

    def __init__(self, capacity: float, now: float):
        self.tokens: float = capacity
        self.last_refill: float = now


class RateLimitInfo:
    """Rate limit state returned by ``check()``."""

    __slots__ = ("allowed", "limit", "remaining", "reset_after")

    def __init__(self, allowed: bool, limit: int, remaining: int, reset_after: float):
        self.allowed = allowed
        self.limit = limit
        self.remaining = remaining
        self.reset_after = reset_after

    def headers(self) -> dict[str, str]:
        """Return rate-limit response headers (RFC 6585 style)."""
        h: dict[str, str] = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_after)),
        }
        if not self.allowed:
            h["Retry-After"] = str(max(1, math.ceil(self.reset_after)))
        return h


class RateLimiter:
    """Token-bucket rate limiter keyed by caller IP.

    Parameters
    ----------
    rate : float
        Tokens added per second.
    capacity : int
        Maximum burst size (bucket capacity).
    """

    def __init__(self, rate: float, capacity: int):
        self.rate = rate
        self.capacity = capacity
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        """Return True if the request is allowed, consuming one token."""
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitInfo:
        now = time.monotonic()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = _Bucket(self.capacity, now)

            elapsed = now - bucket.last_refill
            bucket.tokens = min(self.capacity, bucket.tokens + elapsed * self.rate)
            bucket.last_refill = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                reset_after = (self.capacity - bucket.tokens) / self.rate if self.rate > 0 else 0
                return RateLimitInfo(True, self.capacity, int(bucket.tokens), reset_after)

            reset_after = (1.0 - bucket.tokens) / self.rate if self.rate > 0 else 1.0
            return RateLimitInfo(False, self.capacity, 0, reset_after)

    def cleanup(self, max_age: float = 3600.0) -> int:
        """Remove stale entries older than *max_age* seconds. Returns count removed."""
        now = time.monotonic()
        with self._lock:
            stale = [k for k, b in self._buckets.items() if now - b.last_refill > max_age]
            for k in stale:
                del self._buckets[k]
        return len(stale)


class Window:
    """A fixed window: at most *limit* requests per *seconds*."""

    __slots__ = ("seconds", "limit")

    def __init__(self, seconds: float, limit: int):
        if seconds <= 0 or limit < 0:
            raise ValueError("window seconds must be > 0 and limit >= 0")
        self.seconds = seconds
        self.limit = limit


class _Counter:
    __slots__ = ("count", "reset_at")

    def __init__(self, reset_at: float):
        self.count = 0
        self.reset_at = reset_at


class WindowRateLimiter:
    """Fixed-window counters per (client, user, endpoint) triple.

    A request is allowed only if every window still has room; an allowed
    request increments all windows for the triple.
    """

    def __init__(self, windows: list[Window], clock: Callable[[], float] | None = None):
        if not windows:
            raise ValueError("at least one window is required")
        self.windows = list(windows)
        self.clock = clock or time.monotonic
        self._counters: dict[tuple[str, str, str], list[_Counter]] = {}
        self._lock = threading.Lock()

    def allow(self, client_id: str, user_id: str, endpoint: str) -> bool:
        """Return True if the request is allowed. Errors deny."""
        try:
            return self.check(client_id, user_id, endpoint).allowed
        except Exception:
            logger.exception("Rate limit evaluation failed for %s", endpoint)
            return False

    def check(self, client_id: str, user_id: str, endpoint: str) -> RateLimitInfo:
        key = (client_id, user_id, endpoint)
        now = self.clock()
        with self._lock:
            counters = self._counters.get(key)
            if counters is None:
                counters = self._counters[key] = [
                    _Counter(now + w.seconds) for w in self.windows
                ]

            for window, counter in zip(self.windows, counters, strict=True):
                if counter.reset_at <= now:
                    counter.count = 0
                    counter.reset_at = now + window.seconds

            for window, counter in zip(self.windows, counters, strict=True):
                if counter.count >= window.limit:
                    return RateLimitInfo(False, window.limit, 0, counter.reset_at - now)

            for counter in counters:
                counter.count += 1

            # Report the window closest to exhaustion
            window, counter = min(
                zip(self.windows, counters, strict=True),
                key=lambda wc: wc[0].limit - wc[1].count,
            )
            return RateLimitInfo(
                True, window.limit, window.limit - counter.count, counter.reset_at - now
            )

    def cleanup(self) -> int:
        """Drop triples whose every window has expired. Returns count removed."""
        now = self.clock()
        with self._lock:
            stale = [
                k for k, cs in self._counters.items() if all(c.reset_at <= now for c in cs)
            ]
            for k in stale:
                del self._counters[k]
        return len(stale)


# Pre-configured limiter instances
auth_limiter = RateLimiter(rate=1.0, capacity=10)
_window_limiter: WindowRateLimiter | None = None


def get_window_limiter() -> WindowRateLimiter:
    """Return the resource limiter, initialized from config on first call."""
    global _window_limiter
    if _window_limiter is None:
        from contextgate.config import get_settings

        settings = get_settings()
        _window_limiter = WindowRateLimiter(
            [
                Window(60, settings.rate_limit_per_minute),
                Window(3600, settings.rate_limit_per_hour),
                Window(86400, settings.rate_limit_per_day),
            ]
        )
    return _window_limiter


def cleanup_all() -> int:
    """Run cleanup on all global limiters. Returns total entries removed."""
    total = auth_limiter.cleanup()
    if _window_limiter is not None:
        total += _window_limiter.cleanup()
    return total
