from __future__ import annotations

import io
from abc import ABC, abstractmethod
from enum import Enum
from typing import BinaryIO, Generic, TypeVar

V = TypeVar("V")


class RemovalCause(Enum):
    EVICTED = "evicted"  # removed to make space
    REMOVED = "removed"  # replaced by put, removed by remove, or cleared

    @property
    def evicted(self) -> bool:
        return self is RemovalCause.EVICTED


class Converter(ABC, Generic[V]):
    """Converts values to and from a byte stream for the disk tier.

    Implementations must be stateless and round-trip values exactly.
    """

    @abstractmethod
    def from_bytes(self, data: bytes) -> V:
        """Decode a value; raise ConversionError on malformed input."""

    @abstractmethod
    def to_stream(self, value: V, stream: BinaryIO) -> None:
        """Encode ``value`` into ``stream``."""

    def to_bytes(self, value: V) -> bytes:
        buf = io.BytesIO()
        self.to_stream(value, buf)
        return buf.getvalue()
