"""Exception types for the two-level cache.

Configuration problems raise at construction time. Disk tier failures are
``OSError`` subclasses so callers can catch them alongside plain I/O errors;
the cache itself catches them around every per-key disk operation.

Usage:
    from twolevel_lru.errors import DISK_ERRORS

    try:
        store.remove(key)
    except DISK_ERRORS as e:
        logger.warning(f"Disk error: {e}")
"""

from __future__ import annotations

import sqlite3

import diskcache


class CacheError(Exception):
    """Base class for cache errors."""


class CacheConfigError(CacheError, ValueError):
    """Invalid cache configuration (capacities, converter, versions)."""


class DiskStoreError(CacheError, OSError):
    """The disk tier could not complete an operation."""


class IncompatibleStoreError(DiskStoreError):
    """The store directory was written with a different version or layout."""


class StoreClosedError(DiskStoreError):
    """Operation attempted on a closed (or deleted) disk store."""


class ConversionError(CacheError, ValueError):
    """A converter could not encode or decode a value."""


# Low-level failures raised by the disk backend
DISK_ERRORS: tuple[type[BaseException], ...] = (
    OSError,            # includes DiskStoreError
    sqlite3.Error,      # database locked, corrupt file
    diskcache.Timeout,  # lock acquisition timed out
)
