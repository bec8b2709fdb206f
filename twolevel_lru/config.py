from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from twolevel_lru.errors import CacheConfigError


@dataclass(frozen=True)
class DiskConfig:
    directory: Path
    max_size_bytes: int
    app_version: int = 1
    reset_on_version_mismatch: bool = False


@dataclass(frozen=True)
class WorkloadConfig:
    num_requests: int = 10_000
    num_keys: int = 1_000
    reuse_model: str = "zipf"
    reuse_zipf_a: float = 1.2
    seed: int = 1
    value_size: int = 256
    trace_path: Optional[Path] = None


@dataclass
class CacheConfig:
    memory_max_size: int
    disk: Optional[DiskConfig]
    converter: str = "json"
    workload: WorkloadConfig = field(default_factory=WorkloadConfig)


def load_config(path: str | Path) -> CacheConfig:
    data = _read_yaml(path)
    base_dir = Path(path).resolve().parent

    memory = data.get("memory", {}) if isinstance(data.get("memory", {}), dict) else {}
    if memory.get("max_size") is None:
        raise CacheConfigError(f"memory.max_size is required in {path}")

    disk = None
    disk_data = data.get("disk")
    if isinstance(disk_data, dict) and disk_data.get("directory"):
        if disk_data.get("max_size_bytes") is None:
            raise CacheConfigError(f"disk.max_size_bytes is required in {path}")
        disk = DiskConfig(
            directory=_resolve(base_dir, disk_data["directory"]),
            max_size_bytes=int(disk_data["max_size_bytes"]),
            app_version=int(disk_data.get("app_version", 1)),
            reset_on_version_mismatch=bool(disk_data.get("reset_on_version_mismatch", False)),
        )

    workload_data = data.get("workload", {}) if isinstance(data.get("workload", {}), dict) else {}
    trace_path = workload_data.get("trace_path")
    workload = WorkloadConfig(
        num_requests=int(workload_data.get("num_requests", 10_000)),
        num_keys=int(workload_data.get("num_keys", 1_000)),
        reuse_model=str(workload_data.get("reuse_model", "zipf")).lower(),
        reuse_zipf_a=float(workload_data.get("reuse_zipf_a", 1.2)),
        seed=int(workload_data.get("seed", 1)),
        value_size=int(workload_data.get("value_size", 256)),
        trace_path=_resolve(base_dir, trace_path) if trace_path else None,
    )

    return CacheConfig(
        memory_max_size=int(memory["max_size"]),
        disk=disk,
        converter=str(data.get("converter", "json")),
        workload=workload,
    )


def _read_yaml(path: str | Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise CacheConfigError(f"Top level of {path} must be a mapping")
    return data


def _resolve(base_dir: Path, value: Any) -> Path:
    path = Path(str(value)).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path
