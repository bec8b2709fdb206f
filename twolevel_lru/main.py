from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Callable, List, Optional

import numpy as np

from twolevel_lru.analysis.metrics import MetricsCollector
from twolevel_lru.cache.factory import build_cache
from twolevel_lru.cache.two_level import TwoLevelLruCache
from twolevel_lru.config import CacheConfig, load_config
from twolevel_lru.requests.generator import KeyGenerator
from twolevel_lru.simulator.engine import BenchRunner

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Two-level (memory + disk) LRU cache")
    parser.add_argument("--config", required=True, help="Path to YAML config")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="command", required=True)

    get = sub.add_parser("get", help="Print the value stored for a key")
    get.add_argument("key")

    put = sub.add_parser("put", help="Store a value; parsed as JSON when the converter is json")
    put.add_argument("key")
    put.add_argument("value")

    remove = sub.add_parser("remove", help="Remove a key from both tiers")
    remove.add_argument("key")

    sub.add_parser("stats", help="Print cache statistics as JSON")
    sub.add_parser("evict-all", help="Clear memory and delete the disk store")
    sub.add_parser("bench", help="Replay the configured workload and print a report")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)
    cfg = load_config(args.config)

    with build_cache(cfg) as cache:
        if args.command == "get":
            value = cache.get(args.key)
            if value is None:
                print(f"{args.key}: not found")
                return 1
            print(_format_value(value))
        elif args.command == "put":
            cache.put(args.key, _parse_value(cfg, args.value))
        elif args.command == "remove":
            previous = cache.remove(args.key)
            print(f"{args.key}: removed" if previous is not None else f"{args.key}: not in memory")
        elif args.command == "stats":
            print(json.dumps(cache.stats(), indent=2, sort_keys=True))
        elif args.command == "evict-all":
            cache.evict_all()
        elif args.command == "bench":
            print(run_bench(cfg, cache).to_text())
    return 0


def run_bench(cfg: CacheConfig, cache: TwoLevelLruCache):
    metrics = MetricsCollector()
    runner = BenchRunner(cache, metrics, _value_factory(cfg))
    for req in KeyGenerator(cfg.workload).generate():
        runner.handle_request(req)
    return metrics.finalize(cache.stats())


def _value_factory(cfg: CacheConfig) -> Callable[[str], Any]:
    rng = np.random.default_rng(cfg.workload.seed)
    size = max(1, cfg.workload.value_size)
    converter = cfg.converter.lower()

    def make_value(key: str) -> Any:
        if converter == "numpy":
            return rng.random(max(1, size // 8))
        payload = rng.integers(0, 256, size=size, dtype=np.uint8).tobytes()
        if converter == "bytes":
            return payload
        return payload.hex()[:size]

    return make_value


def _parse_value(cfg: CacheConfig, raw: str) -> Any:
    converter = cfg.converter.lower()
    if converter in {"json", "pickle"}:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw
    if converter == "bytes":
        return raw.encode("utf-8")
    if converter == "numpy":
        return np.asarray(json.loads(raw))
    return raw


def _format_value(value: Any) -> str:
    if isinstance(value, np.ndarray):
        return np.array2string(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, str):
        return value
    return json.dumps(value)


if __name__ == "__main__":
    raise SystemExit(main())
