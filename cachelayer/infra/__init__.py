"""
Infrastructure components backed by the shared cache store.

- Store-backed fixed-window rate limiting
"""

from __future__ import annotations

from cachelayer.infra.rate_limiter import (
    ADMIN_CACHE_READ_RULE,
    ADMIN_CACHE_WRITE_RULE,
    API_RULE,
    AUTH_RULE,
    UPLOAD_RULE,
    RateLimitDecision,
    RateLimiter,
    RateLimitRule,
    pattern_may_match_windows,
)

__all__ = [
    "RateLimiter",
    "RateLimitDecision",
    "RateLimitRule",
    "API_RULE",
    "AUTH_RULE",
    "UPLOAD_RULE",
    "ADMIN_CACHE_READ_RULE",
    "ADMIN_CACHE_WRITE_RULE",
    "pattern_may_match_windows",
]
