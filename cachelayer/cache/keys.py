"""Cache key namespaces and TTL presets.

Keys follow ``{entity}:{id}:{sub-resource}``, e.g. ``user:42:followers``
or ``feed:{user_id}:{page}``. The convention is shared with callers, not
enforced by the cache.
"""

from __future__ import annotations


class CacheKeys:
    POST = "post:"
    POSTS = "posts:"
    POPULAR_POSTS = "popular:posts:"
    COMMUNITY = "community:"
    COMMUNITIES = "communities:"
    USER = "user:"
    USERS = "users:"
    COMMENT = "comment:"
    COMMENTS = "comments:"
    FEED = "feed:"
    SEARCH = "search:"
    STATS = "stats:"


class CacheTTL:
    """TTL presets in seconds, one per namespace."""

    POST = 60 * 5
    POSTS = 60 * 2
    POPULAR_POSTS = 60 * 10
    COMMUNITY = 60 * 5
    COMMUNITIES = 60 * 15
    USER = 60 * 5
    USERS = 60 * 10
    COMMENT = 60 * 5
    COMMENTS = 60 * 2
    FEED = 60
    SEARCH = 60 * 30
    STATS = 60 * 60


def build_key(prefix: str, *parts: object) -> str:
    """Join a namespace prefix and key parts with ':'.

    >>> build_key(CacheKeys.USER, 42, "followers")
    'user:42:followers'
    """
    if not prefix.endswith(":"):
        prefix += ":"
    return prefix + ":".join(str(p) for p in parts)


def pattern_for(prefix: str, *parts: object) -> str:
    """Glob matching every key under ``prefix`` + ``parts``.

    >>> pattern_for(CacheKeys.FEED, "user123")
    'feed:user123:*'
    """
    if not parts:
        return (prefix if prefix.endswith(":") else prefix + ":") + "*"
    return build_key(prefix, *parts) + ":*"
