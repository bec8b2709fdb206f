from __future__ import annotations

import contextlib
import io
import json
import logging
import os
import shutil
import tempfile
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterator, List, Optional, Set, Tuple

import diskcache

from twolevel_lru.errors import (
    DISK_ERRORS,
    CacheConfigError,
    DiskStoreError,
    IncompatibleStoreError,
    StoreClosedError,
)

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
INDEX_NAME = "index.json"
MAGIC = "twolevel_lru.DiskStore"
STORE_VERSION = 1


class DiskStore:
    """Persistent key -> value-slots store in a single directory.

    Records are committed atomically by the underlying ``diskcache.Cache``
    (one SQLite transaction per write). Capacity is accounted here in value
    bytes only: once the slots of all records add up to more than
    ``max_size``, the least recently used records are removed. ``diskcache``
    never culls on its own. The recency index is written to ``index.json``
    on ``flush`` and ``close``; records committed after the last flush are
    treated as the most recently used when the store is reopened.
    """

    def __init__(
        self,
        directory: Path,
        app_version: int,
        value_count: int,
        max_size: int,
        cache: diskcache.Cache,
        index: "OrderedDict[str, int]",
    ) -> None:
        self._directory = directory
        self._app_version = app_version
        self._value_count = value_count
        self._max_size = max_size
        self._cache = cache
        # key -> value bytes, least recently used first
        self._index = index
        self._size = sum(index.values())
        self._lock = threading.Lock()
        self._editing: Set[str] = set()
        self._closed = False

    @classmethod
    def open(
        cls,
        directory: str | os.PathLike,
        app_version: int,
        value_count: int = 1,
        max_size: int = 0,
        *,
        reset_on_version_mismatch: bool = False,
    ) -> "DiskStore":
        if max_size <= 0:
            raise CacheConfigError("max_size <= 0")
        if value_count <= 0:
            raise CacheConfigError("value_count <= 0")

        path = Path(directory)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DiskStoreError(f"Unable to create cache directory {path}: {exc}") from exc
        if not path.is_dir() or not os.access(path, os.W_OK):
            raise DiskStoreError(f"Cache directory is not writable: {path}")

        manifest = _read_manifest(path)
        expected = _manifest(app_version, value_count)
        if manifest is not None and manifest != expected:
            if not reset_on_version_mismatch:
                raise IncompatibleStoreError(
                    f"Store at {path} has {manifest}, expected {expected}"
                )
            logger.info("Resetting incompatible store at %s (found %s)", path, manifest)
            _delete_contents(path)

        with _wrap_errors("open", str(path)):
            cache = diskcache.Cache(str(path), eviction_policy="none", cull_limit=0)
            index = _rebuild_index(cache, _read_index(path))
        if manifest != expected:
            _write_manifest(path, expected)
        store = cls(path, app_version, value_count, int(max_size), cache, index)
        # A smaller max_size than last time applies right away.
        with store._lock, _wrap_errors("open", str(path)):
            store._trim_to_size()
        logger.debug("Opened disk store %s (%d records, max_size=%d)", path, len(index), max_size)
        return store

    def get(self, key: str) -> Optional["Snapshot"]:
        self._check_not_closed()
        with _wrap_errors("get", key):
            values = self._cache.get(key, default=None, retry=True)
        if values is None:
            return None
        with self._lock:
            if key in self._index:
                self._index.move_to_end(key)
        return Snapshot(key, tuple(values))

    def edit(self, key: str) -> Optional["Editor"]:
        """Open an editor for ``key``, or ``None`` if one is already open."""
        with self._lock:
            self._check_not_closed()
            if key in self._editing:
                return None
            self._editing.add(key)
        return Editor(self, key)

    def remove(self, key: str) -> bool:
        self._check_not_closed()
        with self._lock, _wrap_errors("remove", key):
            removed = bool(self._cache.delete(key, retry=True))
            self._size -= self._index.pop(key, 0)
        return removed

    def size(self) -> int:
        """Number of value bytes currently stored."""
        with self._lock:
            return self._size

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)

    def keys(self) -> List[str]:
        """Stored keys, least recently used first."""
        with self._lock:
            return list(self._index)

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def value_count(self) -> int:
        return self._value_count

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def closed(self) -> bool:
        return self._closed

    def flush(self) -> None:
        """Persist the recency index; records themselves are already durable."""
        self._check_not_closed()
        with self._lock:
            order = list(self._index.items())
        _write_index(self._directory, order)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._editing.clear()
            order = list(self._index.items())
        try:
            _write_index(self._directory, order)
        finally:
            self._cache.close()
        logger.debug("Closed disk store %s", self._directory)

    def delete(self) -> None:
        """Close the store and delete every file in its directory."""
        try:
            self.close()
        finally:
            _delete_contents(self._directory)
            with self._lock:
                self._index.clear()
                self._size = 0
        logger.info("Deleted disk store contents at %s", self._directory)

    def _commit(self, key: str, slots: Dict[int, bytes]) -> None:
        with self._lock:
            self._check_not_closed()
            with _wrap_errors("commit", key):
                if len(slots) < self._value_count:
                    previous = self._cache.get(key, default=None, retry=True)
                    if previous is None:
                        missing = sorted(set(range(self._value_count)) - set(slots))
                        raise DiskStoreError(
                            f"Newly created entry {key!r} didn't create value for index {missing[0]}"
                        )
                    merged = [slots.get(i, previous[i]) for i in range(self._value_count)]
                else:
                    merged = [slots[i] for i in range(self._value_count)]
                self._cache.set(key, tuple(merged), retry=True)
                self._size -= self._index.pop(key, 0)
                self._index[key] = _record_size(merged)
                self._size += self._index[key]
                self._trim_to_size()

    def _trim_to_size(self) -> None:
        # Caller holds self._lock.
        while self._size > self._max_size and self._index:
            key, nbytes = self._index.popitem(last=False)
            self._size -= nbytes
            self._cache.delete(key, retry=True)
            logger.debug("Evicted disk record %s (%d bytes)", key, nbytes)

    def _release(self, key: str) -> None:
        with self._lock:
            self._editing.discard(key)

    def _check_not_closed(self) -> None:
        if self._closed:
            raise StoreClosedError(f"Disk store at {self._directory} is closed")

    def __repr__(self) -> str:
        return f"DiskStore(directory={str(self._directory)!r}, max_size={self._max_size}, closed={self._closed})"


class Snapshot:
    """Values of one record as read at ``DiskStore.get`` time."""

    def __init__(self, key: str, values: Tuple[bytes, ...]) -> None:
        self.key = key
        self._values = values
        self._streams: list[BinaryIO] = []

    def open_stream(self, index: int = 0) -> BinaryIO:
        stream = io.BytesIO(self._values[index])
        self._streams.append(stream)
        return stream

    def get_bytes(self, index: int = 0) -> bytes:
        return self._values[index]

    def close(self) -> None:
        for stream in self._streams:
            stream.close()
        self._streams.clear()

    def __enter__(self) -> "Snapshot":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Editor:
    """Pending write for one record; nothing is visible until ``commit``."""

    def __init__(self, store: DiskStore, key: str) -> None:
        self._store = store
        self.key = key
        self._buffers: Dict[int, io.BytesIO] = {}
        self._done = False

    def new_output_stream(self, index: int = 0) -> BinaryIO:
        if self._done:
            raise DiskStoreError(f"Editor for {self.key!r} is already finished")
        if not 0 <= index < self._store.value_count:
            raise IndexError(f"Expected index in [0, {self._store.value_count}), got {index}")
        buf = io.BytesIO()
        self._buffers[index] = buf
        return buf

    def commit(self) -> None:
        if self._done:
            raise DiskStoreError(f"Editor for {self.key!r} is already finished")
        try:
            slots = {i: buf.getvalue() for i, buf in self._buffers.items()}
            self._store._commit(self.key, slots)
        finally:
            self._finish()

    def abort(self) -> None:
        self._finish()

    def abort_unless_committed(self) -> None:
        if not self._done:
            self.abort()

    def _finish(self) -> None:
        if self._done:
            return
        self._done = True
        self._buffers.clear()
        self._store._release(self.key)


@contextlib.contextmanager
def _wrap_errors(op: str, key: str) -> Iterator[None]:
    try:
        yield
    except DiskStoreError:
        raise
    except DISK_ERRORS as exc:
        raise DiskStoreError(f"Disk store {op} failed for {key!r}: {exc}") from exc


def _manifest(app_version: int, value_count: int) -> dict:
    return {
        "magic": MAGIC,
        "store_version": STORE_VERSION,
        "app_version": int(app_version),
        "value_count": int(value_count),
    }


def _read_manifest(directory: Path) -> Optional[dict]:
    path = directory / MANIFEST_NAME
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        return {"error": f"unreadable manifest: {exc}"}
    return data if isinstance(data, dict) else {"error": "manifest is not an object"}


def _write_manifest(directory: Path, manifest: dict) -> None:
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".manifest-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(manifest, f)
        os.replace(tmp, directory / MANIFEST_NAME)
    except OSError as exc:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise DiskStoreError(f"Unable to write manifest in {directory}: {exc}") from exc


def _delete_contents(directory: Path) -> None:
    if not directory.exists():
        return
    for child in directory.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def _record_size(values: Any) -> int:
    return sum(len(v) for v in values)


def _read_index(directory: Path) -> List[Tuple[str, int]]:
    path = directory / INDEX_NAME
    if not path.exists():
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable index %s: %s", path, exc)
        return []
    if not isinstance(data, list):
        return []
    return [(str(item[0]), int(item[1])) for item in data if isinstance(item, list) and len(item) == 2]


def _rebuild_index(cache: diskcache.Cache, saved: List[Tuple[str, int]]) -> "OrderedDict[str, int]":
    stored = set(cache.iterkeys())
    index: "OrderedDict[str, int]" = OrderedDict()
    for key, nbytes in saved:
        if key in stored:
            index[key] = nbytes
    # Records committed after the last flush are the newest.
    for key in sorted(stored - set(index)):
        values = cache.get(key, default=None, retry=True)
        if values is not None:
            index[key] = _record_size(values)
    return index


def _write_index(directory: Path, order: List[Tuple[str, int]]) -> None:
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".index-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump([[key, nbytes] for key, nbytes in order], f)
        os.replace(tmp, directory / INDEX_NAME)
    except OSError as exc:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise DiskStoreError(f"Unable to write index in {directory}: {exc}") from exc
