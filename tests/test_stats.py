"""Tests for CacheStats counters."""

from __future__ import annotations

import threading

import pytest

from cachelayer.cache.stats import CacheStats


class TestCacheStats:

    def test_starts_at_zero(self):
        stats = CacheStats()
        assert stats.snapshot() == {
            "hits": 0, "misses": 0, "errors": 0, "sets": 0, "deletes": 0,
        }
        assert stats.hit_rate() == 0.0

    def test_hit_rate_is_ratio_of_lookups(self):
        """hit_rate() is hits / (hits + misses); errors do not count."""
        stats = CacheStats()
        stats.record_hit(3)
        stats.record_miss()
        stats.record_error(10)
        assert stats.hit_rate() == pytest.approx(0.75)

    def test_record_delete_accepts_counts(self):
        stats = CacheStats()
        stats.record_delete(4)
        stats.record_delete(0)
        assert stats.deletes == 4

    def test_negative_increment_rejected(self):
        with pytest.raises(ValueError):
            CacheStats().record_hit(-1)

    def test_reset_zeroes_every_counter(self):
        stats = CacheStats()
        stats.record_hit()
        stats.record_miss()
        stats.record_error()
        stats.record_set()
        stats.record_delete()
        stats.reset()
        assert set(stats.snapshot().values()) == {0}

    def test_snapshot_is_a_copy(self):
        stats = CacheStats()
        snap = stats.snapshot()
        stats.record_hit()
        assert snap["hits"] == 0

    def test_concurrent_increments_are_not_lost(self):
        """Increments from many threads add up exactly."""
        stats = CacheStats()

        def work():
            for _ in range(1000):
                stats.record_hit()
                stats.record_miss()

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert stats.hits == 8000
        assert stats.misses == 8000

    def test_repr_lists_counters(self):
        stats = CacheStats()
        stats.record_hit()
        assert repr(stats) == "CacheStats(hits=1, misses=0, errors=0, sets=0, deletes=0)"
