"""
Core types for the key-value store.

This module defines the fundamental data structures used throughout the system:
- Enums for stored value types and transaction modes
- Frozen Entry dataclass returned by every read path
- Helper functions for version generation and epoch-millisecond timestamps
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Union

from uuid6 import uuid7

# Values the store can hold. bytes-like values are stored as blobs,
# everything orjson can serialize is stored as JSON.
KVValue = Union[str, int, float, bool, bytes, bytearray, memoryview, dict, list, tuple, None]

# Returns the current wall-clock time in epoch milliseconds.
Clock = Callable[[], int]


def generate_version() -> str:
    """Generate a fresh version tag.

    UUIDv7 carries a millisecond timestamp in its high bits followed by
    random bits, so tags are unique with high probability and roughly
    time-ordered.
    """
    return str(uuid7())


def now_ms() -> int:
    """Get current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


class ValueType(str, Enum):
    """Type tag stored alongside every value."""

    JSON = "json"
    STRING = "string"
    NUMBER = "number"
    BINARY = "binary"
    BOOLEAN = "boolean"


class TransactionMode(str, Enum):
    """Locking strategy requested when a transaction begins."""

    WRITE = "write"
    READ = "read"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class Entry:
    """A stored key with its decoded value and current version tag.

    Attributes:
        key: The entry key.
        value: Decoded value.
        version: Opaque version tag regenerated on every write.
        expires_at: Absolute expiry deadline in epoch milliseconds, if any.
    """

    key: str
    value: Any
    version: str
    expires_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        value = self.value
        if isinstance(value, bytes):
            value = value.hex()
        return {
            "key": self.key,
            "value": value,
            "version": self.version,
            "expires_at": self.expires_at,
        }
