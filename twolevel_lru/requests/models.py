from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class KeyRequest:
    request_id: int
    key: str
