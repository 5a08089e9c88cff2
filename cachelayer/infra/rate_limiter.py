"""
Store-backed fixed-window rate limiter.

Counts requests per (route tag, client identifier) in the same
CacheBackend the read-through cache uses, so it is distributed across API
instances whenever that backend is Redis.

Algorithm (one window per key):
- Fresh: no window recorded or the previous one expired -> count = 1,
  window TTL = window_ms, allowed
- Active, count < limit -> count += 1, allowed
- Active, count >= limit -> denied, count unchanged, retry after the
  window's remaining TTL

The check-and-increment is a single backend call (a Lua script on Redis),
so concurrent requests cannot both take the last slot.

Design decisions:
- Key format: ratelimit:{route_tag}:{identifier}
- Window TTL is set on the first increment so idle windows self-expire
- Store failures follow an explicit StoreErrorPolicy (allow by default),
  overridable per call for security-sensitive routes
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from cachelayer.cache.backend import CacheBackend
from cachelayer.cache.stats import CacheStats
from cachelayer.config import StoreErrorPolicy

log = structlog.get_logger(__name__)

KEY_PREFIX = "ratelimit"

_GLOB_CHARS = "*?[\\"


def pattern_may_match_windows(pattern: str) -> bool:
    """True when a glob could delete rate-limit windows.

    Windows share the keyspace with cache entries, so "*" or "ratelimit:*"
    would reset every client's budget. Only the literal prefix before the
    first glob character is inspected, which errs on the side of True.
    """
    prefix = f"{KEY_PREFIX}:"
    for i, ch in enumerate(pattern):
        if ch in _GLOB_CHARS:
            literal = pattern[:i]
            return prefix.startswith(literal) or literal.startswith(prefix)
    return pattern.startswith(prefix)


@dataclass(frozen=True)
class RateLimitRule:
    """A request budget: max_requests per window_ms."""

    max_requests: int
    window_ms: int


API_RULE = RateLimitRule(max_requests=100, window_ms=60_000)
AUTH_RULE = RateLimitRule(max_requests=5, window_ms=15 * 60_000)
UPLOAD_RULE = RateLimitRule(max_requests=10, window_ms=60_000)
ADMIN_CACHE_READ_RULE = RateLimitRule(max_requests=20, window_ms=60_000)
ADMIN_CACHE_WRITE_RULE = RateLimitRule(max_requests=10, window_ms=60_000)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of RateLimiter.check()."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch milliseconds
    count: int
    retry_after: int | None = None  # seconds, only set when denied
    degraded: bool = False  # store failed; decided by policy

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* headers, plus Retry-After when denied."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed and self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """
    Fixed-window rate limiter over a CacheBackend.

    Example:
        limiter = RateLimiter(backend)
        decision = await limiter.check("1.2.3.4", "api:posts", 100, 60_000)
        if not decision.allowed:
            ...  # 429 with decision.headers()
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        on_store_error: StoreErrorPolicy = StoreErrorPolicy.ALLOW,
        stats: CacheStats | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the rate limiter.

        Args:
            backend: Store holding the window counters
            on_store_error: Default policy when the store fails
            stats: Shared counters; store failures are recorded as errors
            clock: Wall clock in seconds (injectable for tests)
        """
        self._backend = backend
        self._on_store_error = on_store_error
        self._stats = stats
        self._clock = clock

    @staticmethod
    def make_key(route_tag: str, identifier: str) -> str:
        return f"{KEY_PREFIX}:{route_tag}:{identifier}"

    async def check(
        self,
        identifier: str,
        route_tag: str,
        max_requests: int,
        window_ms: int,
        *,
        on_store_error: StoreErrorPolicy | None = None,
    ) -> RateLimitDecision:
        """
        Count one request and decide whether it may proceed.

        Args:
            identifier: Client identity (usually the client IP)
            route_tag: Route identifier; each tag has its own budget
            max_requests: Requests allowed per window
            window_ms: Window length in milliseconds
            on_store_error: Overrides the limiter's default policy
        """
        if max_requests < 1 or window_ms < 1:
            raise ValueError("max_requests and window_ms must be positive")

        key = self.make_key(route_tag, identifier)
        now_ms = int(self._clock() * 1000)

        try:
            hit = await self._backend.hit_window(key, max_requests, window_ms)
        except Exception as exc:
            return self._on_failure(
                exc,
                key=key,
                max_requests=max_requests,
                window_ms=window_ms,
                now_ms=now_ms,
                policy=on_store_error or self._on_store_error,
            )

        reset_at = now_ms + hit.ttl_ms
        if hit.allowed:
            return RateLimitDecision(
                allowed=True,
                limit=max_requests,
                remaining=max_requests - hit.count,
                reset_at=reset_at,
                count=hit.count,
            )

        retry_after = max(1, math.ceil((reset_at - now_ms) / 1000))
        log.warning(
            "rate_limit.exceeded",
            identifier=identifier,
            route=route_tag,
            count=hit.count,
            limit=max_requests,
            retry_after=retry_after,
        )
        return RateLimitDecision(
            allowed=False,
            limit=max_requests,
            remaining=0,
            reset_at=reset_at,
            count=hit.count,
            retry_after=retry_after,
        )

    def _on_failure(
        self,
        exc: Exception,
        *,
        key: str,
        max_requests: int,
        window_ms: int,
        now_ms: int,
        policy: StoreErrorPolicy,
    ) -> RateLimitDecision:
        log.error(
            "rate_limiter.check_failed",
            key=key,
            error=str(exc),
            policy=str(policy),
        )
        if self._stats is not None:
            self._stats.record_error()

        allowed = policy == StoreErrorPolicy.ALLOW
        return RateLimitDecision(
            allowed=allowed,
            limit=max_requests,
            remaining=max_requests if allowed else 0,
            reset_at=now_ms + window_ms,
            count=0,
            retry_after=None if allowed else math.ceil(window_ms / 1000),
            degraded=True,
        )

    async def reset(self, identifier: str, route_tag: str) -> None:
        """Drop the window for one client on one route (useful in tests)."""
        await self._backend.delete(self.make_key(route_tag, identifier))
        log.info("rate_limiter.reset", identifier=identifier, route=route_tag)
