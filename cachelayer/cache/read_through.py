"""Read-through cache wrapper.

Wraps an async computation (typically a database query) with
get-or-compute-and-store semantics against one key:

    followers = await cache.with_cache(
        build_key(CacheKeys.USER, user_id, "followers"),
        lambda: fetch_followers(user_id),
        ttl=CacheTTL.USER,
    )

Values are stored as JSON text, so anything returned from the cache has
been through a JSON round-trip (tuples come back as lists, for example).

The cache never decides the caller's outcome:
- a store failure on lookup or write is logged, counted, and the computed
  value is returned as if the cache were absent;
- a failing computation is never cached and its exception reaches the
  caller unchanged.

Concurrent misses on the same key share one in-flight computation, so a
hot key expiring under load triggers one recomputation per process rather
than one per request.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from cachelayer.cache.backend import CacheBackend
from cachelayer.cache.stats import CacheStats

log = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 60

_MISSING = object()


class ComputeTimeoutError(TimeoutError):
    """The wrapped computation did not finish within compute_timeout."""


class ReadThroughCache:
    """Get-or-compute cache over any CacheBackend.

    Args:
        backend: Store the entries live in.
        stats: Shared counters; a private instance is created when omitted.
        default_ttl: TTL used when with_cache() is called without one.
        compute_timeout: Seconds a computation may run before
            ComputeTimeoutError. None means unbounded.
        coalesce: Share in-flight computations between concurrent misses.
    """

    def __init__(
        self,
        backend: CacheBackend,
        stats: CacheStats | None = None,
        *,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        compute_timeout: float | None = None,
        coalesce: bool = True,
    ) -> None:
        self._backend = backend
        self._stats = stats if stats is not None else CacheStats()
        self._default_ttl = default_ttl
        self._compute_timeout = compute_timeout
        self._coalesce = coalesce
        self._in_flight: dict[str, asyncio.Future[Any]] = {}

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @property
    def stats(self) -> CacheStats:
        return self._stats

    # ------------------------------------------------------------------
    # Read-through
    # ------------------------------------------------------------------

    async def with_cache(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl: int | None = None,
        *,
        skip_cache: bool = False,
    ) -> T:
        """Return the cached value for key, computing and storing it on a miss.

        Args:
            key: Cache key, e.g. "user:42:followers".
            compute: Zero-arg coroutine function producing a JSON-serialisable value.
            ttl: Seconds the stored value stays fresh. Defaults to default_ttl.
            skip_cache: Ignore any stored value and refresh it.

        Raises:
            Whatever compute() raises, unchanged.
            ComputeTimeoutError: compute() exceeded compute_timeout.
        """
        ttl = self._default_ttl if ttl is None else ttl

        if not skip_cache:
            cached = await self._lookup(key)
            if cached is not _MISSING:
                return cached  # type: ignore[return-value]

        if not self._coalesce:
            return await self._compute_and_store(key, compute, ttl)

        pending = self._in_flight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._compute_and_store(key, compute, ttl))
            self._in_flight[key] = pending
            pending.add_done_callback(lambda done, k=key: self._forget(k, done))
        else:
            log.debug("cache.miss_coalesced", key=key)
        # Shield so one cancelled caller does not cancel the shared computation.
        return await asyncio.shield(pending)  # type: ignore[no-any-return]

    def _forget(self, key: str, done: asyncio.Future[Any]) -> None:
        if self._in_flight.get(key) is done:
            del self._in_flight[key]
        # Mark the outcome as retrieved even when every waiter was cancelled
        if not done.cancelled():
            done.exception()

    async def _lookup(self, key: str) -> Any:
        try:
            raw = await self._backend.get(key)
        except Exception as exc:
            log.warning("cache.get_failed", key=key, error=str(exc))
            self._stats.record_error()
            return _MISSING

        if raw is None:
            self._stats.record_miss()
            return _MISSING

        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as exc:
            log.warning("cache.decode_failed", key=key, error=str(exc))
            self._stats.record_error()
            self._stats.record_miss()
            await self._discard(key)
            return _MISSING

        self._stats.record_hit()
        return value

    async def _discard(self, key: str) -> None:
        try:
            await self._backend.delete(key)
        except Exception as exc:
            log.warning("cache.delete_failed", key=key, error=str(exc))
            self._stats.record_error()

    async def _run(self, compute: Callable[[], Awaitable[T]]) -> T:
        if self._compute_timeout is None:
            return await compute()
        deadline = asyncio.timeout(self._compute_timeout)
        try:
            async with deadline:
                return await compute()
        except TimeoutError as exc:
            # A TimeoutError raised by compute() itself passes through unchanged
            if not deadline.expired():
                raise
            raise ComputeTimeoutError(
                f"computation exceeded {self._compute_timeout}s"
            ) from exc

    async def _compute_and_store(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl: int,
    ) -> T:
        value = await self._run(compute)
        await self._store(key, value, ttl)
        return value

    async def _store(self, key: str, value: Any, ttl: int) -> bool:
        try:
            serialised = json.dumps(value)
        except (TypeError, ValueError) as exc:
            log.warning("cache.encode_failed", key=key, error=str(exc))
            self._stats.record_error()
            return False

        try:
            await self._backend.set(key, serialised, ttl)
        except Exception as exc:
            log.warning("cache.set_failed", key=key, error=str(exc))
            self._stats.record_error()
            return False

        self._stats.record_set()
        return True

    # ------------------------------------------------------------------
    # Population / eviction
    # ------------------------------------------------------------------

    async def prefetch(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: int | None = None,
    ) -> bool:
        """Compute and store a value ahead of the first read.

        Never raises: a failing computation or store is logged and counted.
        Returns True when the value was stored.
        """
        try:
            value = await self._run(compute)
        except Exception as exc:
            log.error("cache.prefetch_failed", key=key, error=str(exc))
            self._stats.record_error()
            return False
        stored = await self._store(key, value, self._default_ttl if ttl is None else ttl)
        if stored:
            log.debug("cache.prefetched", key=key)
        return stored

    async def invalidate(self, pattern: str) -> int:
        """Delete every key matching a glob pattern, e.g. "feed:user123:*".

        Returns the number of keys removed. A store failure is logged and
        counted and reported as 0 so mutation handlers are not failed by
        the cache.

        Rate-limit windows (``ratelimit:*``) share the store, so a broad
        pattern such as "*" also resets every client's request budget.
        """
        try:
            deleted = await self._backend.delete_pattern(pattern)
        except Exception as exc:
            log.error("cache.invalidate_failed", pattern=pattern, error=str(exc))
            self._stats.record_error()
            return 0

        self._stats.record_delete(deleted)
        log.info("cache.invalidated", pattern=pattern, deleted=deleted)
        return deleted

    async def invalidate_key(self, key: str) -> None:
        """Delete a single key."""
        try:
            await self._backend.delete(key)
        except Exception as exc:
            log.error("cache.invalidate_failed", key=key, error=str(exc))
            self._stats.record_error()
            return
        self._stats.record_delete()

    async def reset_all(self) -> None:
        """Remove every entry from the store, rate-limit windows included."""
        await self._backend.flush_all()
