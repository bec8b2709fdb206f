"""Tests for the bounded in-memory tier."""

import threading

import pytest

from twolevel_lru.cache.interfaces import RemovalCause
from twolevel_lru.cache.memory import MemoryLruCache
from twolevel_lru.errors import CacheConfigError


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, cause, key, old, new):
        self.events.append((cause, key, old, new))


class TestBasics:
    """get / put / remove and recency order."""

    def test_rejects_non_positive_max_size(self):
        with pytest.raises(CacheConfigError):
            MemoryLruCache(0)

    def test_put_and_get(self):
        cache = MemoryLruCache(3)
        assert cache.put("a", "A") is None
        assert cache.get("a") == "A"
        assert cache.get("b") is None
        assert cache.hit_count == 1
        assert cache.miss_count == 1
        assert cache.put_count == 1

    def test_put_returns_previous(self):
        cache = MemoryLruCache(3)
        cache.put("a", "A")
        assert cache.put("a", "A2") == "A"
        assert cache.get("a") == "A2"
        assert cache.size == 1

    def test_none_key_or_value_rejected(self):
        cache = MemoryLruCache(3)
        with pytest.raises(TypeError):
            cache.put("a", None)
        with pytest.raises(TypeError):
            cache.get(None)

    def test_lru_eviction_order(self):
        cache = MemoryLruCache(2)
        cache.put("a", "A")
        cache.put("b", "B")
        cache.get("a")
        cache.put("c", "C")
        assert list(cache.snapshot()) == ["a", "c"]
        assert cache.eviction_count == 1

    def test_contains_does_not_touch_recency(self):
        cache = MemoryLruCache(2)
        cache.put("a", "A")
        cache.put("b", "B")
        assert "a" in cache
        cache.put("c", "C")
        assert "a" not in cache
        assert len(cache) == 2

    def test_remove(self):
        cache = MemoryLruCache(2)
        cache.put("a", "A")
        assert cache.remove("a") == "A"
        assert cache.remove("a") is None
        assert cache.size == 0

    def test_repr(self):
        cache = MemoryLruCache(10)
        cache.put("a", "A")
        cache.get("a")
        cache.get("a")
        cache.get("b")
        assert repr(cache) == "LruCache[maxSize=10,hits=2,misses=1,hitRate=66%]"


class TestNotifications:
    """Removal notifications carry the right cause."""

    def test_capacity_eviction_is_evicted(self):
        recorder = Recorder()
        cache = MemoryLruCache(1, on_removed=recorder)
        cache.put("a", "A")
        cache.put("b", "B")
        assert recorder.events == [(RemovalCause.EVICTED, "a", "A", None)]

    def test_overwrite_is_removed_with_new_value(self):
        recorder = Recorder()
        cache = MemoryLruCache(2, on_removed=recorder)
        cache.put("a", "A")
        cache.put("a", "A2")
        assert recorder.events == [(RemovalCause.REMOVED, "a", "A", "A2")]

    def test_remove_is_removed(self):
        recorder = Recorder()
        cache = MemoryLruCache(2, on_removed=recorder)
        cache.put("a", "A")
        cache.remove("a")
        assert recorder.events == [(RemovalCause.REMOVED, "a", "A", None)]

    def test_evict_all_reports_removed_lru_first(self):
        recorder = Recorder()
        cache = MemoryLruCache(5, on_removed=recorder)
        cache.put("a", "A")
        cache.put("b", "B")
        cache.evict_all()
        assert [(e[0], e[1]) for e in recorder.events] == [
            (RemovalCause.REMOVED, "a"),
            (RemovalCause.REMOVED, "b"),
        ]
        assert cache.size == 0
        assert cache.eviction_count == 0

    def test_notification_runs_without_lock(self):
        seen = []

        def on_removed(cause, key, old, new):
            # Re-entrant call would deadlock if the lock were held.
            seen.append(cache.size)

        cache = MemoryLruCache(1, on_removed=on_removed)
        cache.put("a", "A")
        cache.put("b", "B")
        assert seen == [1]


class TestWeights:
    def test_weighted_capacity(self):
        cache = MemoryLruCache(10, size_of=lambda k, v: len(v))
        cache.put("a", "x" * 4)
        cache.put("b", "x" * 4)
        cache.put("c", "x" * 4)
        assert list(cache.snapshot()) == ["b", "c"]
        assert cache.size == 8

    def test_negative_weight_raises(self):
        cache = MemoryLruCache(10, size_of=lambda k, v: -1)
        with pytest.raises(ValueError):
            cache.put("a", "A")

    def test_oversized_entry_is_evicted_immediately(self):
        recorder = Recorder()
        cache = MemoryLruCache(3, size_of=lambda k, v: len(v), on_removed=recorder)
        cache.put("a", "xxxxx")
        assert cache.get("a") is None
        assert recorder.events == [(RemovalCause.EVICTED, "a", "xxxxx", None)]

    def test_weight_is_fixed_at_insertion(self):
        value = ["x", "x"]
        cache = MemoryLruCache(10, size_of=lambda k, v: len(v))
        cache.put("a", value)
        value.append("x")
        cache.remove("a")
        assert cache.size == 0


class TestCreateAndPromote:
    def test_create_on_miss(self):
        cache = MemoryLruCache(5, create=lambda key: key.upper())
        assert cache.get("a") == "A"
        assert cache.miss_count == 1
        assert cache.create_count == 1
        assert cache.put_count == 0
        assert cache.get("a") == "A"
        assert cache.hit_count == 1

    def test_create_returning_none(self):
        cache = MemoryLruCache(5, create=lambda key: None)
        assert cache.get("a") is None
        assert cache.create_count == 0
        assert len(cache) == 0

    def test_create_conflict_keeps_resident_value(self):
        recorder = Recorder()

        def create(key):
            cache.put(key, "stored")
            return "created"

        cache = MemoryLruCache(5, create=create, on_removed=recorder)
        assert cache.get("a") == "stored"
        assert recorder.events == [(RemovalCause.REMOVED, "a", "created", "stored")]
        assert cache.snapshot() == {"a": "stored"}

    def test_promote_does_not_count(self):
        cache = MemoryLruCache(5)
        assert cache.promote("a", "A") == "A"
        assert cache.put_count == 0
        assert cache.create_count == 0
        assert cache.get("a") == "A"

    def test_promote_loses_to_resident(self):
        recorder = Recorder()
        cache = MemoryLruCache(5, on_removed=recorder)
        cache.put("a", "new")
        assert cache.promote("a", "old") == "new"
        assert recorder.events == []

    def test_promote_trims(self):
        cache = MemoryLruCache(2)
        cache.put("a", "A")
        cache.put("b", "B")
        cache.promote("c", "C")
        assert list(cache.snapshot()) == ["b", "c"]
        assert cache.eviction_count == 1


class TestConcurrency:
    def test_parallel_puts_respect_capacity(self):
        cache = MemoryLruCache(50)

        def worker(offset):
            for i in range(200):
                cache.put(f"k{offset}-{i}", i)
                cache.get(f"k{offset}-{i // 2}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.size <= 50
        assert cache.put_count == 800
        assert cache.eviction_count == 800 - len(cache)
