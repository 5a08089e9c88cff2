"""Read-through caching layer.

Public API:
    CacheBackend          - Abstract base for all backends
    RedisCacheBackend     - Redis-backed production store
    InMemoryCacheBackend  - Dict-backed store for dev/testing
    BackendConfig         - Inputs to backend selection
    select_backend        - Picks the backend for an environment + URL

    ReadThroughCache      - with_cache / invalidate / prefetch
    CacheStats            - Hit/miss/error counters

    CacheKeys, CacheTTL   - Key namespaces and TTL presets
"""

from cachelayer.cache.backend import (
    BackendConfig,
    CacheBackend,
    CacheBackendError,
    CacheConfigurationError,
    InMemoryCacheBackend,
    RedisCacheBackend,
    WindowHit,
    select_backend,
)
from cachelayer.cache.keys import CacheKeys, CacheTTL, build_key, pattern_for
from cachelayer.cache.read_through import ComputeTimeoutError, ReadThroughCache
from cachelayer.cache.stats import CacheStats

__all__ = [
    "BackendConfig",
    "CacheBackend",
    "CacheBackendError",
    "CacheConfigurationError",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "WindowHit",
    "select_backend",
    "ReadThroughCache",
    "ComputeTimeoutError",
    "CacheStats",
    "CacheKeys",
    "CacheTTL",
    "build_key",
    "pattern_for",
]
