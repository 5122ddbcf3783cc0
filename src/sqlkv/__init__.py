"""
sqlkv - an async key-value store on a single SQLite table.

Typed values, lazy expiration, JSON field filters and transactions.
"""

from __future__ import annotations

from pathlib import Path

__version__ = "0.1.0"

from sqlkv.config import Settings, get_settings
from sqlkv.exceptions import (
    ConfigurationError,
    DecodeError,
    EncodeError,
    FilterError,
    KVError,
    SessionClosedError,
    UsageError,
)
from sqlkv.filters import And, Condition, FilterBuilder, Not, Or
from sqlkv.store import KVStore, KVTransaction
from sqlkv.types import Clock, Entry, TransactionMode, ValueType


async def create_kv(
    database: str | Path | None = None,
    table_name: str | None = None,
    *,
    settings: Settings | None = None,
    clock: Clock | None = None,
) -> KVStore:
    """Create and initialize a KV store.

    Anything not passed explicitly comes from settings (environment/.env).
    The schema is ready before the store is returned.
    """
    settings = settings or get_settings()
    kwargs = {"clock": clock} if clock is not None else {}
    kv = KVStore(
        database if database is not None else settings.KV_DATABASE_PATH,
        table_name or settings.KV_TABLE_NAME,
        busy_timeout=settings.KV_BUSY_TIMEOUT,
        strict_operators=settings.KV_STRICT_OPERATORS,
        default_transaction_mode=settings.KV_DEFAULT_TRANSACTION_MODE,
        **kwargs,
    )
    await kv.init()
    return kv


__all__ = [
    "And",
    "Condition",
    "ConfigurationError",
    "DecodeError",
    "EncodeError",
    "Entry",
    "FilterBuilder",
    "FilterError",
    "KVError",
    "KVStore",
    "KVTransaction",
    "Not",
    "Or",
    "SessionClosedError",
    "Settings",
    "TransactionMode",
    "UsageError",
    "ValueType",
    "create_kv",
]
