"""Cache backend implementations.

Defines the CacheBackend ABC and two concrete implementations:
- RedisCacheBackend: Production backend using Redis
- InMemoryCacheBackend: Dict-based backend with TTL, for testing/dev

Backends store raw text. Serialisation belongs to the callers
(ReadThroughCache JSON-encodes values), so a corrupt entry is detected
where it is decoded rather than hidden inside the store.

select_backend() picks the implementation from an explicit BackendConfig.
It is pure: no environment lookups, so it can be unit tested directly.
Redis is used whenever a URL is configured. Without one the in-memory
store is used in dev/test and startup fails in production, because a
per-process cache silently breaks rate limiting and invalidation across
workers.
"""

from __future__ import annotations

import asyncio
import fnmatch
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from cachelayer.config import Environment, Settings

log = structlog.get_logger(__name__)

SCAN_BATCH_SIZE = 100


class CacheBackendError(Exception):
    """Raised when the backing store cannot complete an operation."""


class CacheConfigurationError(RuntimeError):
    """Raised at startup when no usable backend can be configured."""


@dataclass(frozen=True)
class WindowHit:
    """Outcome of one fixed-window check-and-increment."""

    allowed: bool
    count: int
    ttl_ms: int


class CacheBackend(ABC):
    """Abstract interface all cache backends must implement."""

    name: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return stored text for key, or None if not found / expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Store value under key. ttl is in seconds; None means no expiry."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete key from cache (no-op if key does not exist)."""

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern. Returns deleted count."""

    @abstractmethod
    async def flush_all(self) -> None:
        """Remove ALL keys from the cache. Use with caution."""

    @abstractmethod
    async def hit_window(self, key: str, limit: int, window_ms: int) -> WindowHit:
        """Atomically count one request against a fixed window.

        When the window already holds ``limit`` requests the count is left
        unchanged and ``allowed`` is False. The first request of a window
        starts it with a TTL of ``window_ms``.
        """

    @abstractmethod
    async def info(self) -> dict[str, Any]:
        """Return backend-specific info dict."""

    async def close(self) -> None:
        """Release any held connections."""


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


# KEYS[1] = window key, ARGV[1] = limit, ARGV[2] = window length in ms.
# Returns {allowed, count, pttl}.
_LUA_WINDOW_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])

local current = tonumber(redis.call('GET', key) or '0')
if current >= limit then
    local ttl = redis.call('PTTL', key)
    if ttl < 0 then
        redis.call('PEXPIRE', key, window)
        ttl = window
    end
    return {0, current, ttl}
end

local count = redis.call('INCR', key)
if count == 1 then
    redis.call('PEXPIRE', key, window)
end

local ttl = redis.call('PTTL', key)
if ttl < 0 then
    redis.call('PEXPIRE', key, window)
    ttl = window
end
return {1, count, ttl}
"""


class RedisCacheBackend(CacheBackend):
    """Production cache backend backed by Redis.

    Uses redis-py's asyncio client for all operations. The client is
    created lazily on first call so constructing the backend never blocks
    or touches the network. Every client failure is re-raised as
    CacheBackendError; callers decide how to degrade.
    """

    name = "redis"

    def __init__(self, redis_url: str, *, client: Any = None) -> None:
        self._redis_url = redis_url
        self._client: Any = client  # redis.asyncio.Redis, set on first use
        self._window_script: Any = None

    def _get_client(self) -> Any:
        """Return or create the Redis client (lazy init)."""
        if self._client is None:
            self._client = aioredis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def get(self, key: str) -> str | None:
        try:
            return await self._get_client().get(key)
        except (RedisError, OSError) as exc:
            raise CacheBackendError(f"GET {key!r} failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        try:
            client = self._get_client()
            if ttl is None:
                await client.set(key, value)
            else:
                await client.set(key, value, ex=ttl)
        except (RedisError, OSError) as exc:
            raise CacheBackendError(f"SET {key!r} failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._get_client().delete(key)
        except (RedisError, OSError) as exc:
            raise CacheBackendError(f"DEL {key!r} failed: {exc}") from exc

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern using SCAN + DEL.

        Walks the keyspace one cursor page at a time so memory stays
        bounded on large keyspaces, deleting each page in a single DEL.
        Stops when the cursor comes back to 0.
        """
        try:
            client = self._get_client()
            deleted = 0
            cursor = 0
            while True:
                cursor, keys = await client.scan(
                    cursor=cursor, match=pattern, count=SCAN_BATCH_SIZE
                )
                if keys:
                    deleted += await client.delete(*keys)
                if int(cursor) == 0:
                    break
        except (RedisError, OSError) as exc:
            raise CacheBackendError(f"pattern delete {pattern!r} failed: {exc}") from exc

        log.debug("cache.redis.pattern_deleted", pattern=pattern, deleted=deleted)
        return deleted

    async def flush_all(self) -> None:
        try:
            await self._get_client().flushdb()
        except (RedisError, OSError) as exc:
            raise CacheBackendError(f"FLUSHDB failed: {exc}") from exc
        log.info("cache.redis.flushed_all")

    async def hit_window(self, key: str, limit: int, window_ms: int) -> WindowHit:
        try:
            client = self._get_client()
            if self._window_script is None:
                self._window_script = client.register_script(_LUA_WINDOW_SCRIPT)
            allowed, count, ttl_ms = await self._window_script(
                keys=[key], args=[limit, window_ms]
            )
        except (RedisError, OSError) as exc:
            raise CacheBackendError(f"window check {key!r} failed: {exc}") from exc
        return WindowHit(allowed=bool(int(allowed)), count=int(count), ttl_ms=int(ttl_ms))

    async def info(self) -> dict[str, Any]:
        try:
            client = self._get_client()
            redis_info = await client.info()
            dbsize = await client.dbsize()
            return {
                "backend": self.name,
                "connected": True,
                "used_memory_human": redis_info.get("used_memory_human", "unknown"),
                "connected_clients": redis_info.get("connected_clients", 0),
                "total_keys": dbsize,
            }
        except (RedisError, OSError) as exc:
            return {
                "backend": self.name,
                "connected": False,
                "error": str(exc),
            }

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._client is not None:
            try:
                await self._client.aclose()
            except (RedisError, OSError) as exc:
                log.warning("cache.redis.close_failed", error=str(exc))
            self._client = None
            self._window_script = None


# ---------------------------------------------------------------------------
# In-memory backend (testing / dev fallback)
# ---------------------------------------------------------------------------


class _CacheEntry:
    """Single entry stored by InMemoryCacheBackend."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: str, expires_at: float | None) -> None:
        self.value = value
        self.expires_at = expires_at

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


class InMemoryCacheBackend(CacheBackend):
    """Dict-backed cache with TTL support.

    Safe under concurrent coroutines via asyncio.Lock. Suitable for testing
    and single-process dev environments. Entries are visible to this
    process only and do NOT survive a restart.

    Pattern deletes use real glob matching (fnmatchcase, case-sensitive
    like Redis MATCH), so only matching keys are removed.
    """

    name = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._store: dict[str, _CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str, now: float) -> _CacheEntry | None:
        entry = self._store.get(key)
        if entry is not None and entry.is_expired(now):
            del self._store[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._live(key, self._clock())
            return None if entry is None else entry.value

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        async with self._lock:
            expires_at = None if ttl is None else self._clock() + ttl
            self._store[key] = _CacheEntry(value, expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern (fnmatch semantics)."""
        async with self._lock:
            now = self._clock()
            to_delete = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
            live = 0
            for k in to_delete:
                # Expired entries are dropped but not reported as deleted
                if not self._store.pop(k).is_expired(now):
                    live += 1
            return live

    async def flush_all(self) -> None:
        async with self._lock:
            self._store.clear()
        log.info("cache.memory.flushed_all")

    async def hit_window(self, key: str, limit: int, window_ms: int) -> WindowHit:
        async with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                entry = _CacheEntry("0", now + window_ms / 1000)
                self._store[key] = entry

            count = int(entry.value)
            if entry.expires_at is None:
                ttl_ms = window_ms
            else:
                ttl_ms = max(0, int((entry.expires_at - now) * 1000))
            if count >= limit:
                return WindowHit(allowed=False, count=count, ttl_ms=ttl_ms)

            count += 1
            entry.value = str(count)
            return WindowHit(allowed=True, count=count, ttl_ms=ttl_ms)

    async def info(self) -> dict[str, Any]:
        async with self._lock:
            now = self._clock()
            expired = [k for k, v in self._store.items() if v.is_expired(now)]
            for k in expired:
                del self._store[k]

            return {
                "backend": self.name,
                "connected": True,
                "total_keys": len(self._store),
            }


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BackendConfig:
    """Inputs to backend selection."""

    environment: Environment
    redis_url: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> BackendConfig:
        return cls(environment=settings.environment, redis_url=settings.redis_url)


def select_backend(config: BackendConfig) -> CacheBackend:
    """Return the CacheBackend for the given configuration.

    Args:
        config: Environment and optional Redis URL.

    Returns:
        RedisCacheBackend when a URL is configured, otherwise an
        InMemoryCacheBackend outside production.

    Raises:
        CacheConfigurationError: production without a Redis URL.
    """
    if config.redis_url:
        log.info("cache.backend_selected", backend="redis", url=_redact(config.redis_url))
        return RedisCacheBackend(config.redis_url)

    if config.environment == Environment.PROD:
        raise CacheConfigurationError(
            "REDIS_URL is required in production: the in-memory store is "
            "per-process and cannot back caching or rate limiting across workers"
        )

    log.warning(
        "cache.redis_not_configured",
        reason="REDIS_URL not set - using in-memory cache",
        environment=str(config.environment),
    )
    return InMemoryCacheBackend()


def _redact(url: str) -> str:
    """Drop credentials from a connection URL before logging it."""
    if "@" in url and "://" in url:
        scheme, rest = url.split("://", 1)
        return f"{scheme}://***@{rest.split('@', 1)[1]}"
    return url
