from __future__ import annotations

import pytest

from twolevel_lru.cache.converters import StringConverter
from twolevel_lru.cache.two_level import TwoLevelLruCache

APP_VERSION = 100
DISK_BYTES = 64 * 1024 * 1024


@pytest.fixture
def cache_dir(tmp_path):
    path = tmp_path / "TwoLevelLruCacheTest"
    path.mkdir()
    return path


@pytest.fixture
def open_cache(cache_dir):
    """Factory for string caches on the shared directory; closes them all."""
    opened = []

    def _open(max_size_mem: int = 1_000_000, cls=TwoLevelLruCache, **kwargs):
        cache = cls(
            max_size_mem,
            directory=kwargs.pop("directory", cache_dir),
            app_version=kwargs.pop("app_version", APP_VERSION),
            max_size_disk=kwargs.pop("max_size_disk", DISK_BYTES),
            converter=kwargs.pop("converter", StringConverter()),
            **kwargs,
        )
        opened.append(cache)
        return cache

    yield _open
    for cache in opened:
        cache.close()
