from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from twolevel_lru.analysis.metrics import MetricsCollector
from twolevel_lru.cache.two_level import TwoLevelLruCache
from twolevel_lru.requests.models import KeyRequest


@dataclass
class BenchRunner:
    cache: TwoLevelLruCache
    metrics: MetricsCollector
    make_value: Callable[[str], Any]

    def handle_request(self, req: KeyRequest) -> None:
        start = time.perf_counter()
        value = self.cache.get(req.key)
        get_ms = (time.perf_counter() - start) * 1000.0
        if value is not None:
            self.metrics.record_request(req, served=True, get_ms=get_ms)
            return

        # Read-through on miss: compute and store.
        value = self.make_value(req.key)
        start = time.perf_counter()
        self.cache.put(req.key, value)
        put_ms = (time.perf_counter() - start) * 1000.0
        self.metrics.record_request(req, served=False, get_ms=get_ms, put_ms=put_ms)
