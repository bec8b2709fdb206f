from __future__ import annotations

from twolevel_lru.config import CacheConfig
from twolevel_lru.cache.converters import get_converter
from twolevel_lru.cache.two_level import TwoLevelLruCache


def build_cache(cfg: CacheConfig) -> TwoLevelLruCache:
    converter = get_converter(cfg.converter)
    if cfg.disk is None:
        return TwoLevelLruCache(cfg.memory_max_size, converter=converter)
    return TwoLevelLruCache(
        cfg.memory_max_size,
        directory=cfg.disk.directory,
        app_version=cfg.disk.app_version,
        max_size_disk=cfg.disk.max_size_bytes,
        converter=converter,
        reset_on_version_mismatch=cfg.disk.reset_on_version_mismatch,
    )
