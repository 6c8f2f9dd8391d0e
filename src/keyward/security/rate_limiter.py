"""In-memory token-bucket rate limiter for the OAuth endpoints.

Pre-configured tiers, keyed by client IP:
  - authorize:  2 req/s, burst 20  (consent page + credential submission)
  - token:      5 req/s, burst 30  (code exchange + refresh)
  - register:   0.2 req/s, burst 10 (dynamic client registration)

State is per process. Behind several replicas each one limits on its own.
Idle buckets are swept every few hundred checks, so the table stays bounded
by the number of recently active clients.
"""

from __future__ import annotations

import math
import time

__all__ = [
    "RateLimiter",
    "RateLimitInfo",
    "authorize_limiter",
    "token_limiter",
    "register_limiter",
    "reset_all",
]


class _Bucket:
    """A single token bucket for one client."""

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
            h["Retry-After"] = str(math.ceil(self.reset_after))
        return h


class RateLimiter:
    """Token-bucket rate limiter keyed by client identifier.

    Parameters
    ----------
    rate : float
        Tokens added per second.
    capacity : int
        Maximum burst size (bucket capacity).
    max_idle : float
        Seconds without a request after which a client's bucket is dropped.
    sweep_interval : int
        Number of ``check()`` calls between sweeps of idle buckets.
    """

    def __init__(
        self,
        rate: float,
        capacity: int,
        max_idle: float = 3600.0,
        sweep_interval: int = 256,
    ):
        self.rate = rate
        self.capacity = capacity
        self.max_idle = max_idle
        self.sweep_interval = sweep_interval
        self._buckets: dict[str, _Bucket] = {}
        self._checks_since_sweep = 0

    def allow(self, key: str) -> bool:
        """Return True if the request is allowed, consuming one token."""
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitInfo:
        now = time.monotonic()

        self._checks_since_sweep += 1
        if self._checks_since_sweep >= self.sweep_interval:
            self._checks_since_sweep = 0
            self.cleanup(self.max_idle, now)

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

        # Denied: time until the next token
        reset_after = (1.0 - bucket.tokens) / self.rate if self.rate > 0 else 1.0
        return RateLimitInfo(False, self.capacity, 0, reset_after)

    def cleanup(self, max_age: float = 3600.0, now: float | None = None) -> int:
        """Remove stale entries older than *max_age* seconds. Returns count removed."""
        if now is None:
            now = time.monotonic()
        stale = [k for k, b in self._buckets.items() if now - b.last_refill > max_age]
        for k in stale:
            del self._buckets[k]
        return len(stale)

    def reset(self) -> None:
        self._buckets.clear()
        self._checks_since_sweep = 0


authorize_limiter = RateLimiter(rate=2.0, capacity=20)
token_limiter = RateLimiter(rate=5.0, capacity=30)
register_limiter = RateLimiter(rate=0.2, capacity=10)


def reset_all() -> None:
    for limiter in (authorize_limiter, token_limiter, register_limiter):
        limiter.reset()
