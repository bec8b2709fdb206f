from __future__ import annotations

import io
import json
import pickle
from typing import Any, BinaryIO, Callable, Dict

import numpy as np

from twolevel_lru.cache.interfaces import Converter
from twolevel_lru.errors import CacheConfigError, ConversionError


class BytesConverter(Converter[bytes]):
    def from_bytes(self, data: bytes) -> bytes:
        return bytes(data)

    def to_stream(self, value: bytes, stream: BinaryIO) -> None:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise ConversionError(f"Expected bytes, got {type(value).__name__}")
        stream.write(value)


class StringConverter(Converter[str]):
    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    def from_bytes(self, data: bytes) -> str:
        try:
            return data.decode(self.encoding)
        except UnicodeDecodeError as exc:
            raise ConversionError(f"Invalid {self.encoding} payload: {exc}") from exc

    def to_stream(self, value: str, stream: BinaryIO) -> None:
        if not isinstance(value, str):
            raise ConversionError(f"Expected str, got {type(value).__name__}")
        stream.write(value.encode(self.encoding))


class JsonConverter(Converter[Any]):
    def from_bytes(self, data: bytes) -> Any:
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ConversionError(f"Invalid JSON payload: {exc}") from exc

    def to_stream(self, value: Any, stream: BinaryIO) -> None:
        try:
            payload = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise ConversionError(f"Value is not JSON serializable: {exc}") from exc
        stream.write(payload.encode("utf-8"))


class PickleConverter(Converter[Any]):
    # Only use on cache directories this process trusts.
    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL) -> None:
        self.protocol = protocol

    def from_bytes(self, data: bytes) -> Any:
        try:
            return pickle.loads(data)
        except (pickle.UnpicklingError, EOFError, AttributeError, ImportError, IndexError, ValueError, TypeError) as exc:
            raise ConversionError(f"Invalid pickle payload: {exc}") from exc

    def to_stream(self, value: Any, stream: BinaryIO) -> None:
        try:
            pickle.dump(value, stream, protocol=self.protocol)
        except (pickle.PicklingError, TypeError, AttributeError) as exc:
            raise ConversionError(f"Value cannot be pickled: {exc}") from exc


class NumpyConverter(Converter[np.ndarray]):
    """Stores arrays in the ``.npy`` format; object arrays are rejected."""

    def from_bytes(self, data: bytes) -> np.ndarray:
        try:
            return np.load(io.BytesIO(data), allow_pickle=False)
        except (ValueError, EOFError, OSError) as exc:
            raise ConversionError(f"Invalid .npy payload: {exc}") from exc

    def to_stream(self, value: np.ndarray, stream: BinaryIO) -> None:
        try:
            np.save(stream, np.asarray(value), allow_pickle=False)
        except ValueError as exc:
            raise ConversionError(f"Array cannot be saved without pickle: {exc}") from exc


CONVERTERS: Dict[str, Callable[[], Converter]] = {
    "bytes": BytesConverter,
    "str": StringConverter,
    "json": JsonConverter,
    "pickle": PickleConverter,
    "numpy": NumpyConverter,
}


def get_converter(name: str) -> Converter:
    factory = CONVERTERS.get(name.lower())
    if factory is None:
        raise CacheConfigError(f"Unknown converter: {name}")
    return factory()
