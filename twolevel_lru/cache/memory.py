from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Tuple

from twolevel_lru.cache.interfaces import RemovalCause
from twolevel_lru.errors import CacheConfigError

SizeOf = Callable[[str, Any], int]
Create = Callable[[str], Optional[Any]]
OnRemoved = Callable[[RemovalCause, str, Any, Optional[Any]], None]


def _unit_size(key: str, value: Any) -> int:
    return 1


class MemoryLruCache:
    """Bounded LRU map with weighted entries.

    Entries are kept in an ``OrderedDict`` from least to most recently used.
    ``create`` and ``on_removed`` are always called without the lock held.
    """

    def __init__(
        self,
        max_size: int,
        *,
        size_of: SizeOf | None = None,
        create: Create | None = None,
        on_removed: OnRemoved | None = None,
    ) -> None:
        if max_size <= 0:
            raise CacheConfigError("max_size <= 0")
        self._max_size = int(max_size)
        self._size_of = size_of or _unit_size
        self._create = create
        self._on_removed = on_removed
        # key -> (value, weight); the weight is fixed at insertion
        self._map: OrderedDict[str, Tuple[Any, int]] = OrderedDict()
        self._size = 0
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._creates = 0
        self._puts = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[Any]:
        if key is None:
            raise TypeError("key is None")
        with self._lock:
            entry = self._map.get(key)
            if entry is not None:
                self._map.move_to_end(key)
                self._hits += 1
                return entry[0]
            self._misses += 1

        if self._create is None:
            return None
        created = self._create(key)
        if created is None:
            return None

        weight = self._safe_size_of(key, created)
        with self._lock:
            self._creates += 1
            resident = self._map.get(key)
            if resident is None:
                self._map[key] = (created, weight)
                self._size += weight

        if resident is not None:
            # Another thread stored a value while we were creating ours.
            self._notify(RemovalCause.REMOVED, key, created, resident[0])
            return resident[0]
        self.trim_to_size(self._max_size)
        return created

    def put(self, key: str, value: Any) -> Optional[Any]:
        if key is None or value is None:
            raise TypeError("key is None or value is None")
        weight = self._safe_size_of(key, value)
        with self._lock:
            self._puts += 1
            previous = self._map.pop(key, None)
            if previous is not None:
                self._size -= previous[1]
            self._map[key] = (value, weight)
            self._size += weight

        if previous is not None:
            self._notify(RemovalCause.REMOVED, key, previous[0], value)
        self.trim_to_size(self._max_size)
        return None if previous is None else previous[0]

    def promote(self, key: str, value: Any) -> Any:
        """Insert ``value`` unless the key is already resident.

        Neither the put nor the create counter moves. Returns the value that
        ends up cached: the resident one if it won, else ``value``.
        """
        weight = self._safe_size_of(key, value)
        with self._lock:
            resident = self._map.get(key)
            if resident is not None:
                self._map.move_to_end(key)
                return resident[0]
            self._map[key] = (value, weight)
            self._size += weight
        self.trim_to_size(self._max_size)
        return value

    def remove(self, key: str) -> Optional[Any]:
        if key is None:
            raise TypeError("key is None")
        with self._lock:
            previous = self._map.pop(key, None)
            if previous is not None:
                self._size -= previous[1]
        if previous is None:
            return None
        self._notify(RemovalCause.REMOVED, key, previous[0], None)
        return previous[0]

    def trim_to_size(self, max_size: int) -> None:
        evicted: List[Tuple[str, Any]] = []
        with self._lock:
            while self._size > max_size and self._map:
                key, (value, weight) = self._map.popitem(last=False)
                self._size -= weight
                self._evictions += 1
                evicted.append((key, value))
            if self._size < 0 or (not self._map and self._size != 0):
                raise RuntimeError("size_of() is reporting inconsistent results")
        for key, value in evicted:
            self._notify(RemovalCause.EVICTED, key, value, None)

    def evict_all(self) -> None:
        with self._lock:
            cleared = [(key, entry[0]) for key, entry in self._map.items()]
            self._map.clear()
            self._size = 0
        for key, value in cleared:
            self._notify(RemovalCause.REMOVED, key, value, None)

    def _safe_size_of(self, key: str, value: Any) -> int:
        weight = int(self._size_of(key, value))
        if weight < 0:
            raise ValueError(f"Negative size: {key}={value!r}")
        return weight

    def _notify(self, cause: RemovalCause, key: str, old: Any, new: Optional[Any]) -> None:
        if self._on_removed is not None:
            self._on_removed(cause, key, old, new)

    @property
    def size(self) -> int:
        with self._lock:
            return self._size

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def hit_count(self) -> int:
        with self._lock:
            return self._hits

    @property
    def miss_count(self) -> int:
        with self._lock:
            return self._misses

    @property
    def create_count(self) -> int:
        with self._lock:
            return self._creates

    @property
    def put_count(self) -> int:
        with self._lock:
            return self._puts

    @property
    def eviction_count(self) -> int:
        with self._lock:
            return self._evictions

    def snapshot(self) -> Dict[str, Any]:
        """Copy of the contents, least recently used first."""
        with self._lock:
            return {key: entry[0] for key, entry in self._map.items()}

    def stats(self) -> dict:
        with self._lock:
            total = self._hits + self._misses
            hit_rate = self._hits / total if total else 0.0
            return {
                "hits": self._hits,
                "misses": self._misses,
                "creates": self._creates,
                "puts": self._puts,
                "evictions": self._evictions,
                "hit_rate": hit_rate,
                "size": self._size,
                "max_size": self._max_size,
                "items": len(self._map),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._map)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._map

    def __repr__(self) -> str:
        with self._lock:
            accesses = self._hits + self._misses
            hit_percent = 100 * self._hits // accesses if accesses else 0
            return (
                f"LruCache[maxSize={self._max_size},hits={self._hits},"
                f"misses={self._misses},hitRate={hit_percent}%]"
            )
