"""
Tests for the in-process LRU + TTL result cache.
"""

import time

import pytest

from cigar_scanner.models.records import RecognitionResult
from cigar_scanner.services.result_cache import ResultCache, get_result_cache, reset_result_cache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResultCache(max_size=3, ttl_seconds=300, clock=clock)


def _result(name, confidence=0.9):
    return RecognitionResult(brand="Cohiba", name=name, confidence=confidence)


class TestResultCacheBasic:
    """Test get/set/clear semantics."""

    def test_set_then_get(self, cache):
        cache.set("Cohiba", "Cohiba Robusto", _result("Cohiba Robusto"))

        cached = cache.get("Cohiba", "Cohiba Robusto")

        assert cached is not None
        assert cached.name == "Cohiba Robusto"

    def test_missing_key_returns_none(self, cache):
        assert cache.get("Cohiba", "Siglo VI") is None

    def test_keys_are_normalized(self, cache):
        """Case, whitespace and punctuation differences hit the same entry."""
        cache.set("Cohiba", "Cohiba Robusto", _result("Cohiba Robusto"))

        assert cache.get("  COHIBA ", "cohiba-robusto!") is not None

    def test_returns_snapshot_not_reference(self, cache):
        """Mutating a returned value does not change the cached copy."""
        original = _result("Cohiba Robusto")
        cache.set("Cohiba", "Cohiba Robusto", original)
        original.confidence = 0.1

        first = cache.get("Cohiba", "Cohiba Robusto")
        first.flavor_profile.append("Leather")
        second = cache.get("Cohiba", "Cohiba Robusto")

        assert first.confidence == 0.9
        assert second.flavor_profile == []

    def test_clear_single_key(self, cache):
        cache.set("Cohiba", "Cohiba Robusto", _result("Cohiba Robusto"))
        cache.set("Cohiba", "Cohiba Siglo VI", _result("Cohiba Siglo VI"))

        cache.clear("Cohiba", "Cohiba Robusto")

        assert cache.get("Cohiba", "Cohiba Robusto") is None
        assert cache.get("Cohiba", "Cohiba Siglo VI") is not None

    def test_clear_by_brand(self, cache):
        cache.set("Cohiba", "Cohiba Robusto", _result("Cohiba Robusto"))
        cache.set("Padron", "Padron 1964 Exclusivo", _result("Padron 1964 Exclusivo"))

        cache.clear("Cohiba")

        assert cache.get("Cohiba", "Cohiba Robusto") is None
        assert cache.get("Padron", "Padron 1964 Exclusivo") is not None

    def test_clear_all(self, cache):
        cache.set("Cohiba", "Cohiba Robusto", _result("Cohiba Robusto"))
        cache.set("Padron", "Padron 1964 Exclusivo", _result("Padron 1964 Exclusivo"))

        cache.clear()

        assert len(cache) == 0

    def test_invalid_max_size(self):
        with pytest.raises(ValueError):
            ResultCache(max_size=0)


class TestResultCacheEviction:
    """Test least-recently-used eviction at capacity."""

    def test_inserting_past_capacity_evicts_oldest(self, cache):
        for name in ("A One", "B Two", "C Three", "D Four"):
            cache.set("Cohiba", name, _result(name))

        assert len(cache) == 3
        assert cache.get("Cohiba", "A One") is None
        for name in ("B Two", "C Three", "D Four"):
            assert cache.get("Cohiba", name) is not None

    def test_get_protects_entry_from_eviction(self, cache):
        for name in ("A One", "B Two", "C Three"):
            cache.set("Cohiba", name, _result(name))

        assert cache.get("Cohiba", "A One") is not None
        cache.set("Cohiba", "D Four", _result("D Four"))

        assert cache.get("Cohiba", "A One") is not None
        assert cache.get("Cohiba", "B Two") is None

    def test_overwriting_key_does_not_evict(self, cache):
        for name in ("A One", "B Two", "C Three"):
            cache.set("Cohiba", name, _result(name))

        cache.set("Cohiba", "A One", _result("A One", confidence=0.5))

        assert len(cache) == 3
        assert cache.get("Cohiba", "A One").confidence == 0.5
        assert cache.get_stats()["evictions"] == 0

    def test_keys_in_lru_order(self, cache):
        for name in ("A One", "B Two", "C Three"):
            cache.set("Cohiba", name, _result(name))
        cache.get("Cohiba", "A One")

        assert cache.keys() == ["cohiba_btwo", "cohiba_cthree", "cohiba_aone"]


class TestResultCacheTTL:
    """Test time-based expiry."""

    def test_entry_expires_after_ttl(self, cache, clock):
        cache.set("Cohiba", "Cohiba Robusto", _result("Cohiba Robusto"))
        clock.advance(300.5)

        assert cache.get("Cohiba", "Cohiba Robusto") is None
        assert len(cache) == 0

    def test_expired_read_is_a_miss(self, cache, clock):
        cache.set("Cohiba", "Cohiba Robusto", _result("Cohiba Robusto"))
        clock.advance(301)

        cache.get("Cohiba", "Cohiba Robusto")
        stats = cache.get_stats()

        assert stats["hits"] == 0
        assert stats["misses"] == 1

    def test_entry_alive_before_ttl(self, cache, clock):
        cache.set("Cohiba", "Cohiba Robusto", _result("Cohiba Robusto"))
        clock.advance(299)

        assert cache.get("Cohiba", "Cohiba Robusto") is not None

    def test_access_does_not_extend_ttl(self, cache, clock):
        cache.set("Cohiba", "Cohiba Robusto", _result("Cohiba Robusto"))
        clock.advance(200)
        cache.get("Cohiba", "Cohiba Robusto")
        clock.advance(150)

        assert cache.get("Cohiba", "Cohiba Robusto") is None

    def test_clean_expired(self, cache, clock):
        cache.set("Cohiba", "A One", _result("A One"))
        clock.advance(200)
        cache.set("Cohiba", "B Two", _result("B Two"))
        clock.advance(150)

        removed = cache.clean_expired()

        assert removed == 1
        assert cache.keys() == ["cohiba_btwo"]


class TestResultCacheStatsAndSweeper:
    """Test statistics and the background sweeper."""

    def test_stats(self, cache, clock):
        cache.set("Cohiba", "Cohiba Robusto", _result("Cohiba Robusto"))
        clock.advance(10)
        cache.get("Cohiba", "Cohiba Robusto")
        cache.get("Cohiba", "Missing")

        stats = cache.get_stats()

        assert stats["size"] == 1
        assert stats["max_size"] == 3
        assert stats["ttl_seconds"] == 300
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["entries"] == [{"key": "cohiba_cohibarobusto", "age_seconds": 10.0}]

    def test_sweeper_purges_expired_entries(self):
        cache = ResultCache(max_size=10, ttl_seconds=0.05)
        cache.set("Cohiba", "Cohiba Robusto", _result("Cohiba Robusto"))

        cache.start_sweeper(interval=0.02)
        try:
            deadline = time.monotonic() + 2.0
            while len(cache) and time.monotonic() < deadline:
                time.sleep(0.02)
        finally:
            cache.stop_sweeper()

        assert len(cache) == 0

    def test_singleton_reset(self):
        reset_result_cache()
        first = get_result_cache()
        assert get_result_cache() is first
        reset_result_cache()
        assert get_result_cache() is not first
        reset_result_cache()
