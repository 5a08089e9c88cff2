"""Read-through caching, pattern invalidation and rate limiting over Redis."""

__version__ = "0.1.0"
