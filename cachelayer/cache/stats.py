"""Process-wide cache hit/miss/error counters.

One CacheStats instance is shared by the read-through cache and the rate
limiter for the lifetime of the process. Counters only move forward until
an explicit reset (the admin endpoint). Increments take a threading.Lock so
updates from handlers running in a threadpool are not lost.
"""

from __future__ import annotations

import threading
from typing import Any


class CacheStats:
    """Hit/miss/error/set/delete counters with an atomic increment."""

    _FIELDS = ("hits", "misses", "errors", "sets", "deletes")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int] = dict.fromkeys(self._FIELDS, 0)

    def _add(self, field: str, n: int) -> None:
        if n < 0:
            raise ValueError("counters never decrease; use reset()")
        with self._lock:
            self._counts[field] += n

    def record_hit(self, n: int = 1) -> None:
        self._add("hits", n)

    def record_miss(self, n: int = 1) -> None:
        self._add("misses", n)

    def record_error(self, n: int = 1) -> None:
        self._add("errors", n)

    def record_set(self, n: int = 1) -> None:
        self._add("sets", n)

    def record_delete(self, n: int = 1) -> None:
        self._add("deletes", n)

    @property
    def hits(self) -> int:
        return self._counts["hits"]

    @property
    def misses(self) -> int:
        return self._counts["misses"]

    @property
    def errors(self) -> int:
        return self._counts["errors"]

    @property
    def sets(self) -> int:
        return self._counts["sets"]

    @property
    def deletes(self) -> int:
        return self._counts["deletes"]

    def snapshot(self) -> dict[str, int]:
        """Return a consistent copy of all counters."""
        with self._lock:
            return dict(self._counts)

    def hit_rate(self) -> float:
        """hits / (hits + misses), or 0.0 before any lookup."""
        with self._lock:
            total = self._counts["hits"] + self._counts["misses"]
            return self._counts["hits"] / total if total else 0.0

    def reset(self) -> None:
        with self._lock:
            for field in self._FIELDS:
                self._counts[field] = 0

    def __repr__(self) -> str:
        counts: dict[str, Any] = self.snapshot()
        return f"CacheStats({', '.join(f'{k}={v}' for k, v in counts.items())})"
