from __future__ import annotations

import csv
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

import numpy as np

from twolevel_lru.config import WorkloadConfig
from twolevel_lru.requests.models import KeyRequest

logger = logging.getLogger(__name__)


@dataclass
class KeyGenerator:
    cfg: WorkloadConfig

    def generate(self) -> Iterable[KeyRequest]:
        if self.cfg.trace_path is not None:
            yield from _iter_trace(self.cfg.trace_path)
            return

        if self.cfg.num_keys <= 0:
            raise ValueError("workload.num_keys must be positive")
        rng = np.random.default_rng(self.cfg.seed)
        for i in range(self.cfg.num_requests):
            yield KeyRequest(request_id=i, key=key_name(_sample_key_id(self.cfg, rng)))


def key_name(key_id: int) -> str:
    return f"key-{key_id:08d}"


def _sample_key_id(cfg: WorkloadConfig, rng: np.random.Generator) -> int:
    if cfg.reuse_model == "uniform":
        return int(rng.integers(0, cfg.num_keys))
    if cfg.reuse_model == "zipf":
        # Smaller ids are reused more frequently.
        return int(min(rng.zipf(a=cfg.reuse_zipf_a), cfg.num_keys)) - 1
    raise ValueError(f"Unknown reuse model: {cfg.reuse_model}")


def _iter_trace(trace_path: Path) -> Iterator[KeyRequest]:
    suffix = trace_path.suffix.lower()
    if suffix == ".csv":
        with open(trace_path, "r", encoding="utf-8", newline="") as f:
            for idx, row in enumerate(csv.DictReader(f)):
                yield KeyRequest(request_id=idx, key=str(row["key"]))
        return

    if suffix == ".jsonl":
        decode_errors = 0
        with open(trace_path, "r", encoding="utf-8") as f:
            for idx, line in enumerate(f):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    decode_errors += 1
                    continue
                if not isinstance(record, dict) or record.get("key") is None:
                    decode_errors += 1
                    continue
                yield KeyRequest(request_id=idx, key=str(record["key"]))
        if decode_errors:
            logger.warning("Skipped %d malformed JSONL lines in %s", decode_errors, trace_path)
        return

    raise ValueError(f"Unsupported trace format: {trace_path.suffix}")
