from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Generic, Optional, TypeVar

from twolevel_lru.cache.interfaces import Converter, RemovalCause
from twolevel_lru.cache.memory import MemoryLruCache
from twolevel_lru.errors import DISK_ERRORS, CacheConfigError
from twolevel_lru.store.disk import DiskStore

logger = logging.getLogger(__name__)

V = TypeVar("V")

# Only one value slot per disk record.
VALUE_INDEX = 0


class TwoLevelLruCache(Generic[V]):
    """A two-level LRU cache: a small in-memory L1 over a larger on-disk L2.

    Keys are strings. Values cross the disk boundary through a
    :class:`Converter`, which must round-trip them exactly.

    * ``put`` writes L1 authoritatively, then writes through to L2 on a
      best-effort basis.
    * ``get`` reads L1, then L2; a value found on disk is promoted into L1.
    * Entries evicted from L1 for space stay on disk. Entries replaced or
      removed explicitly are removed from disk as well.
    * Disk failures of a single key operation are logged and ignored: the
      operation behaves as if that tier did not take part.

    Subclasses may override :meth:`create`, :meth:`entry_removed` and
    :meth:`size_of`. None of them is called with a lock held.

    Without ``directory`` the cache is memory-only and ``converter`` is not
    needed.
    """

    def __init__(
        self,
        max_size_mem: int,
        directory: str | os.PathLike | None = None,
        app_version: int = 1,
        max_size_disk: int | None = None,
        converter: Converter[V] | None = None,
        *,
        reset_on_version_mismatch: bool = False,
    ) -> None:
        if directory is not None:
            if max_size_disk is None:
                raise CacheConfigError("max_size_disk is required when a disk directory is given.")
            if max_size_mem >= max_size_disk:
                raise CacheConfigError("It makes more sense to have a larger second-level disk cache.")
            if converter is None:
                raise CacheConfigError("A converter must be submitted.")
        elif max_size_disk is not None:
            raise CacheConfigError("max_size_disk requires a disk directory.")

        self._converter = converter
        self._mem = MemoryLruCache(
            max_size_mem,
            size_of=self.size_of,
            create=self._wrap_create,
            on_removed=self._wrap_entry_removed,
        )
        self._disk: DiskStore | None = None
        if directory is not None:
            self._disk = DiskStore.open(
                directory,
                app_version,
                1,
                max_size_disk,
                reset_on_version_mismatch=reset_on_version_mismatch,
            )

    def get(self, key: str) -> Optional[V]:
        """Return the value for ``key`` or ``None``.

        Resolution order: L1, then :meth:`create` (on the L1 miss path), then
        the disk tier. A disk hit is promoted into L1 but still counts as a
        miss in the statistics, which only see L1.
        """
        value = self._mem.get(key)
        if value is not None or self._disk is None:
            return value
        value = self._get_from_disk_quietly(key)
        if value is None:
            return None
        return self._mem.promote(key, value)

    def put(self, key: str, value: V) -> Optional[V]:
        """Cache ``value`` for ``key`` and return the previous L1 value."""
        previous = self._mem.put(key, value)
        self._put_to_disk_quietly(key, value)
        return previous

    def remove(self, key: str) -> Optional[V]:
        """Remove ``key`` from both tiers and return the previous L1 value."""
        previous = self._mem.remove(key)
        self._remove_from_disk_quietly(key)
        return previous

    def create(self, key: str) -> Optional[V]:
        """Compute a value after an L1 miss, or return ``None``.

        Runs before the disk tier is consulted, so a value returned here
        shadows whatever is stored on disk for ``key``. A created value is
        written through to disk and then cached in L1. If another value was
        stored for ``key`` meanwhile, the created one is discarded and passed
        to :meth:`entry_removed`.
        """
        return None

    def entry_removed(
        self,
        cause: RemovalCause,
        key: str,
        old_value: V,
        new_value: Optional[V],
    ) -> None:
        """Called after an entry leaves L1 and the disk tier was updated.

        ``cause`` is ``EVICTED`` when space was reclaimed (the disk copy is
        kept) and ``REMOVED`` after :meth:`put`, :meth:`remove` or a clear
        (the disk copy is gone). ``new_value`` is set only when a put
        replaced ``old_value``. Other threads may use the cache while this
        runs.
        """

    def size_of(self, key: str, value: V) -> int:
        """Weight of an entry in L1 units; must not change while cached."""
        return 1

    def _wrap_create(self, key: str) -> Optional[V]:
        created = self.create(key)
        if created is None:
            return None
        # The memory value is kept even if this write fails.
        self._put_to_disk_quietly(key, created)
        return created

    def _wrap_entry_removed(
        self,
        cause: RemovalCause,
        key: str,
        old_value: V,
        new_value: Optional[V],
    ) -> None:
        if not cause.evicted:
            self._remove_from_disk_quietly(key)
        self.entry_removed(cause, key, old_value, new_value)

    def _get_from_disk_quietly(self, key: str) -> Optional[V]:
        try:
            snapshot = self._disk.get(key)
            if snapshot is None:
                return None
            with snapshot:
                data = snapshot.open_stream(VALUE_INDEX).read()
            return self._converter.from_bytes(data)
        except Exception:
            # I/O, decode and MemoryError alike read as a miss.
            logger.warning("Unable to get entry from disk cache. key: %s", key, exc_info=True)
            return None

    def _put_to_disk_quietly(self, key: str, value: V) -> None:
        if self._disk is None:
            return
        editor = None
        try:
            editor = self._disk.edit(key)
            if editor is None:
                logger.debug("Disk entry is being edited concurrently; skipped. key: %s", key)
                return
            out = editor.new_output_stream(VALUE_INDEX)
            self._converter.to_stream(value, out)
            editor.commit()
        except Exception:
            logger.warning("Unable to put entry to disk cache. key: %s", key, exc_info=True)
            # An older record for the key must not outlive the failed write.
            self._remove_from_disk_quietly(key)
        finally:
            if editor is not None:
                editor.abort_unless_committed()

    def _remove_from_disk_quietly(self, key: str) -> None:
        if self._disk is None:
            return
        try:
            self._disk.remove(key)
        except DISK_ERRORS:
            logger.warning("Unable to remove entry from disk cache. key: %s", key, exc_info=True)

    def evict_all(self) -> None:
        """Clear L1, then delete the whole disk store."""
        self.evict_all_mem()
        self.evict_all_disk()

    def evict_all_mem(self) -> None:
        """Clear L1; every entry is reported to :meth:`entry_removed` as REMOVED."""
        self._mem.evict_all()

    def evict_all_disk(self) -> None:
        """Close the disk store and delete every file in its directory.

        Files not created by the cache are deleted too. The store stays
        closed afterwards, so later disk operations are skipped as failures.
        """
        if self._disk is not None:
            self._disk.delete()

    @property
    def size_mem(self) -> int:
        return self._mem.size

    @property
    def size_disk(self) -> int:
        """Bytes used by the disk store; 0 without a disk tier or once closed."""
        if self._disk is None or self._disk.closed:
            return 0
        return self._disk.size()

    @property
    def max_size_mem(self) -> int:
        return self._mem.max_size

    @property
    def max_size_disk(self) -> int:
        return 0 if self._disk is None else self._disk.max_size

    @property
    def hit_count(self) -> int:
        """Number of times L1 returned a value."""
        return self._mem.hit_count

    @property
    def miss_count(self) -> int:
        """Number of L1 misses, including gets later served from disk."""
        return self._mem.miss_count

    @property
    def create_count(self) -> int:
        return self._mem.create_count

    @property
    def put_count(self) -> int:
        return self._mem.put_count

    @property
    def eviction_count(self) -> int:
        return self._mem.eviction_count

    def stats(self) -> dict:
        stats = self._mem.stats()
        stats["disk_size"] = self.size_disk
        stats["disk_max_size"] = self.max_size_disk
        return stats

    def snapshot(self) -> Dict[str, V]:
        """Copy of L1, least recently used first."""
        return self._mem.snapshot()

    @property
    def directory(self) -> Optional[Path]:
        return None if self._disk is None else self._disk.directory

    @property
    def closed(self) -> bool:
        return True if self._disk is None else self._disk.closed

    def flush(self) -> None:
        if self._disk is not None:
            self._disk.flush()

    def close(self) -> None:
        """Close the disk store; stored values stay on disk."""
        if self._disk is not None:
            self._disk.close()

    def __enter__(self) -> "TwoLevelLruCache[V]":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return repr(self._mem)
