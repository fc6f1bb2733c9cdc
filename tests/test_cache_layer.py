# tests/test_cache_layer.py

import time

import pytest

from core.config import CacheConfig
from core.response import ErrorCode
from services.cache_layer import CORE_AVERAGE, STUDENT_AVERAGE, CacheLayer


# === get / put ===


def test_get_miss_then_hit(sample_cache):
    miss = sample_cache.get(STUDENT_AVERAGE, "STU001")
    assert miss.error is ErrorCode.NOT_FOUND

    sample_cache.put(STUDENT_AVERAGE, "STU001", 85.0)
    hit = sample_cache.get(STUDENT_AVERAGE, "STU001")

    assert hit.success
    assert hit.data["value"] == 85.0

    stats = sample_cache.stats()
    assert stats.hits == 1
    assert stats.misses == 1
    assert stats.hit_rate == 50.0


def test_hit_bumps_access(sample_cache, fake_clock):
    sample_cache.put(STUDENT_AVERAGE, "STU001", 85.0)
    fake_clock.advance(5)
    sample_cache.get(STUDENT_AVERAGE, "STU001")

    entry = sample_cache.peek(STUDENT_AVERAGE, "STU001")
    assert entry.access_count == 2
    assert entry.last_access == fake_clock.now
    assert sample_cache.stats().requests == 1


def test_kinds_are_separate(sample_cache):
    sample_cache.put(STUDENT_AVERAGE, "STU001", 85.0)

    assert not sample_cache.get(CORE_AVERAGE, "STU001").success


# === ttl ===


def test_expired_entry_is_a_miss_but_stays(sample_cache, fake_clock):
    sample_cache.put(STUDENT_AVERAGE, "STU001", 85.0)
    fake_clock.advance(59)
    assert sample_cache.get(STUDENT_AVERAGE, "STU001").success

    fake_clock.advance(1)
    assert not sample_cache.get(STUDENT_AVERAGE, "STU001").success
    assert sample_cache.peek(STUDENT_AVERAGE, "STU001") is not None
    assert len(sample_cache) == 1


def test_hit_does_not_extend_ttl(sample_cache, fake_clock):
    sample_cache.put(STUDENT_AVERAGE, "STU001", 85.0)
    fake_clock.advance(50)
    sample_cache.get(STUDENT_AVERAGE, "STU001")
    fake_clock.advance(10)

    assert not sample_cache.get(STUDENT_AVERAGE, "STU001").success


def test_sweep_removes_expired(sample_cache, fake_clock):
    sample_cache.put(STUDENT_AVERAGE, "STU001", 85.0)
    sample_cache.put(CORE_AVERAGE, "STU001", 90.0)
    fake_clock.advance(30)
    sample_cache.put(STUDENT_AVERAGE, "STU002", 70.0)
    fake_clock.advance(30)

    assert sample_cache.sweep() == 2
    assert len(sample_cache) == 1
    assert sample_cache.stats().evictions == 2


# === capacity ===


def test_lru_eviction_at_capacity(fake_clock):
    cache = CacheLayer(CacheConfig(ttl_seconds=60.0, max_entries=3), clock=fake_clock)

    for key in ("a", "b", "c"):
        cache.put(STUDENT_AVERAGE, key, 1.0)
        fake_clock.advance(1)

    cache.get(STUDENT_AVERAGE, "a")
    cache.put(STUDENT_AVERAGE, "d", 1.0)

    assert cache.peek(STUDENT_AVERAGE, "b") is None
    assert cache.peek(STUDENT_AVERAGE, "a") is not None
    assert len(cache) == 3
    assert cache.stats().evictions == 1


def test_lru_eviction_across_kinds(fake_clock):
    cache = CacheLayer(CacheConfig(ttl_seconds=60.0, max_entries=2), clock=fake_clock)
    cache.put(CORE_AVERAGE, "STU001", 1.0)
    fake_clock.advance(1)
    cache.put(STUDENT_AVERAGE, "STU002", 2.0)
    fake_clock.advance(1)

    cache.put(STUDENT_AVERAGE, "STU003", 3.0)

    assert cache.peek(CORE_AVERAGE, "STU001") is None
    assert cache.entries_by_kind() == {CORE_AVERAGE: 0, STUDENT_AVERAGE: 2}


def test_high_water_sweep_prefers_expired(fake_clock):
    cache = CacheLayer(
        CacheConfig(ttl_seconds=10.0, max_entries=4, high_water_ratio=0.5), clock=fake_clock
    )
    cache.put(STUDENT_AVERAGE, "old", 1.0)
    fake_clock.advance(10)
    cache.put(STUDENT_AVERAGE, "new", 2.0)

    cache.put(STUDENT_AVERAGE, "newer", 3.0)

    assert cache.peek(STUDENT_AVERAGE, "old") is None
    assert cache.peek(STUDENT_AVERAGE, "new") is not None
    assert len(cache) == 2


def test_overwrite_at_capacity_does_not_evict(fake_clock):
    cache = CacheLayer(CacheConfig(ttl_seconds=60.0, max_entries=2), clock=fake_clock)
    cache.put(STUDENT_AVERAGE, "a", 1.0)
    cache.put(STUDENT_AVERAGE, "b", 2.0)

    cache.put(STUDENT_AVERAGE, "a", 3.0)

    assert len(cache) == 2
    assert cache.get(STUDENT_AVERAGE, "a").data["value"] == 3.0


# === invalidation ===


def test_invalidate_key_across_kinds(sample_cache):
    sample_cache.put(STUDENT_AVERAGE, "STU001", 85.0)
    sample_cache.put(CORE_AVERAGE, "STU001", 90.0)
    sample_cache.put(STUDENT_AVERAGE, "STU002", 70.0)

    assert sample_cache.invalidate("STU001") == 2
    assert sample_cache.invalidate("STU001") == 0
    assert len(sample_cache) == 1


def test_invalidate_kind(sample_cache):
    sample_cache.put(STUDENT_AVERAGE, "STU001", 85.0)
    sample_cache.put(CORE_AVERAGE, "STU001", 90.0)

    assert sample_cache.invalidate_kind(CORE_AVERAGE) == 1
    assert sample_cache.invalidate_kind("unknown") == 0
    assert sample_cache.get(STUDENT_AVERAGE, "STU001").success


def test_invalidate_all_keeps_stats(sample_cache):
    sample_cache.put(STUDENT_AVERAGE, "STU001", 85.0)
    sample_cache.get(STUDENT_AVERAGE, "STU001")

    assert sample_cache.invalidate_all() == 1
    assert len(sample_cache) == 0
    assert sample_cache.stats().hits == 1

    sample_cache.reset_stats()
    assert sample_cache.stats().hits == 0


def test_warm(sample_cache):
    assert sample_cache.warm(STUDENT_AVERAGE, {"STU001": 80.0, "STU002": 90.0}) == 2
    assert sample_cache.get(STUDENT_AVERAGE, "STU002").data["value"] == 90.0


def test_stats_summary(sample_cache):
    sample_cache.put(STUDENT_AVERAGE, "STU001", 85.0)
    sample_cache.get(STUDENT_AVERAGE, "STU001")

    summary = sample_cache.stats().summary()

    assert "CACHE STATISTICS" in summary
    assert "100.0%" in summary


# === background sweep ===


def test_background_sweeper_removes_expired():
    cache = CacheLayer(CacheConfig(ttl_seconds=0.05, sweep_interval_seconds=0.01))
    cache.put(STUDENT_AVERAGE, "STU001", 85.0)

    with cache:
        assert cache.is_sweeping

        deadline = time.monotonic() + 2.0
        while len(cache) and time.monotonic() < deadline:
            time.sleep(0.01)

    assert len(cache) == 0
    assert not cache.is_sweeping
    assert cache.stats().evictions == 1


def test_pause_and_resume(sample_cache):
    sample_cache.start()
    sample_cache.pause()
    assert sample_cache.is_paused

    sample_cache.resume()
    assert not sample_cache.is_paused

    sample_cache.stop(timeout=1.0)
    assert not sample_cache.is_sweeping


# === config ===


def test_cache_config_defaults():
    config = CacheConfig()

    assert config.sweep_interval == 150.0
    assert config.high_water_mark == 120


def test_cache_config_validation():
    with pytest.raises(ValueError):
        CacheConfig(ttl_seconds=0)

    with pytest.raises(ValueError):
        CacheConfig(high_water_ratio=1.5)
