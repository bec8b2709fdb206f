from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

from twolevel_lru.requests.models import KeyRequest


@dataclass
class BenchReport:
    total_requests: int
    served: int
    not_served: int
    served_rate: float
    l1_hits: int
    l1_misses: int
    l1_hit_rate: float
    served_from_disk: int
    evictions: int
    get_mean_ms: float
    get_p95_ms: float
    get_p99_ms: float
    put_mean_ms: float
    mem_size: int
    disk_size: int

    def to_text(self) -> str:
        return (
            "Two-Level Cache Benchmark Report\n"
            f"Total requests: {self.total_requests}\n"
            f"Served (L1 or L2): {self.served}\n"
            f"Not served: {self.not_served}\n"
            f"Served rate: {self.served_rate:.4f}\n"
            f"L1 hits: {self.l1_hits}\n"
            f"L1 misses: {self.l1_misses}\n"
            f"L1 hit rate: {self.l1_hit_rate:.4f}\n"
            f"Served from disk: {self.served_from_disk}\n"
            f"L1 evictions: {self.evictions}\n"
            f"get mean (ms): {self.get_mean_ms:.3f}\n"
            f"get p95 (ms): {self.get_p95_ms:.3f}\n"
            f"get p99 (ms): {self.get_p99_ms:.3f}\n"
            f"put mean (ms): {self.put_mean_ms:.3f}\n"
            f"L1 size: {self.mem_size}\n"
            f"L2 size (bytes): {self.disk_size}\n"
        )


class MetricsCollector:
    def __init__(self) -> None:
        self.total_requests = 0
        self.served = 0
        self.not_served = 0
        self._get_ms: List[float] = []
        self._put_ms: List[float] = []

    def record_request(self, req: KeyRequest, served: bool, get_ms: float, put_ms: float | None = None) -> None:
        self.total_requests += 1
        self._get_ms.append(get_ms)
        if served:
            self.served += 1
        else:
            self.not_served += 1
        if put_ms is not None:
            self._put_ms.append(put_ms)

    def finalize(self, cache_stats: dict) -> BenchReport:
        served_rate = self.served / self.total_requests if self.total_requests else 0.0
        l1_hits = int(cache_stats.get("hits", 0))
        l1_misses = int(cache_stats.get("misses", 0))
        l1_total = l1_hits + l1_misses
        get_mean = float(np.mean(self._get_ms)) if self._get_ms else 0.0
        get_p95 = float(np.percentile(self._get_ms, 95)) if self._get_ms else 0.0
        get_p99 = float(np.percentile(self._get_ms, 99)) if self._get_ms else 0.0
        put_mean = float(np.mean(self._put_ms)) if self._put_ms else 0.0
        return BenchReport(
            total_requests=self.total_requests,
            served=self.served,
            not_served=self.not_served,
            served_rate=served_rate,
            l1_hits=l1_hits,
            l1_misses=l1_misses,
            l1_hit_rate=l1_hits / l1_total if l1_total else 0.0,
            # Disk-served gets are L1 misses that still returned a value.
            served_from_disk=max(0, self.served - l1_hits),
            evictions=int(cache_stats.get("evictions", 0)),
            get_mean_ms=get_mean,
            get_p95_ms=get_p95,
            get_p99_ms=get_p99,
            put_mean_ms=put_mean,
            mem_size=int(cache_stats.get("size", 0)),
            disk_size=int(cache_stats.get("disk_size", 0)),
        )
