"""
Key-value operations shared by every session.

KVCore runs get/get_many/set/delete/list/cleanup against an injected
executor. The root store and transactions each own one KVCore and differ
only in the executor they pass in and in await_expiry_cleanup:

- False (root store): expired rows seen on a read are deleted by a
  background task whose errors are logged and dropped.
- True (transaction): the delete is awaited before the read returns, so
  later statements in the same transaction see it.

Read-only sessions skip the delete. Either way the read itself reports the expired key as absent. "Now" is
read once per operation.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

from sqlkv.codec import decode_value, encode_value
from sqlkv.engine import Executor, Row
from sqlkv.exceptions import UsageError
from sqlkv.filters import WhereInput, compile_filter
from sqlkv.logging import get_logger, log_context
from sqlkv.types import Clock, Entry, KVValue, generate_version, now_ms

logger = get_logger(__name__)

_COLUMNS = "key, value_blob, value_text, value_type, version, expires_at"

# Stays under SQLite's default bound-parameter limit
_MAX_KEYS_PER_QUERY = 500


def _is_expired(row: Row, now: int) -> bool:
    expires_at = row.get("expires_at")
    return expires_at is not None and expires_at <= now


def _row_to_entry(row: Row) -> Entry:
    return Entry(
        key=row["key"],
        value=decode_value(row),
        version=row["version"],
        expires_at=row.get("expires_at"),
    )


class KVCore:
    """Entry store operations bound to one executor.

    Args:
        execute: Coroutine function running one statement and returning rows.
        table_name: Key-value table, already validated as an identifier.
        await_expiry_cleanup: Await expiry deletes instead of backgrounding them.
        read_only: The executor rejects writes, so expired rows are left in place.
        strict_operators: Reject unknown filter operators.
        clock: Epoch-millisecond clock.
        label: Session label used in log context.
    """

    def __init__(
        self,
        execute: Executor,
        table_name: str = "kv_store",
        *,
        await_expiry_cleanup: bool = False,
        read_only: bool = False,
        strict_operators: bool = True,
        clock: Clock = now_ms,
        label: str = "root",
    ) -> None:
        self.execute = execute
        self.table_name = table_name
        self.await_expiry_cleanup = await_expiry_cleanup
        self.read_only = read_only
        self.strict_operators = strict_operators
        self.clock = clock
        self.label = label
        self._pending: set[asyncio.Task[None]] = set()

    async def get(self, key: str) -> Entry | None:
        """Get a single entry, or None if it is missing or expired."""
        now = self.clock()
        rows = await self.execute(
            f"SELECT {_COLUMNS} FROM {self.table_name} WHERE key = ?", [key]
        )
        if not rows:
            return None

        row = rows[0]
        if _is_expired(row, now):
            await self._expire([key], now)
            return None
        return _row_to_entry(row)

    async def get_many(self, keys: Sequence[str]) -> list[Entry | None]:
        """Get several entries at once.

        Returns:
            One slot per input key, in input order. Missing and expired keys
            are None; duplicate keys each get their own slot.
        """
        if not keys:
            return []

        now = self.clock()
        unique_keys = list(dict.fromkeys(keys))
        found: dict[str, Row] = {}
        for start in range(0, len(unique_keys), _MAX_KEYS_PER_QUERY):
            chunk = unique_keys[start : start + _MAX_KEYS_PER_QUERY]
            placeholders = ",".join("?" for _ in chunk)
            rows = await self.execute(
                f"SELECT {_COLUMNS} FROM {self.table_name} WHERE key IN ({placeholders})",
                chunk,
            )
            for row in rows:
                found[row["key"]] = row

        expired = [key for key, row in found.items() if _is_expired(row, now)]
        if expired:
            for key in expired:
                del found[key]
            await self._expire(expired, now)

        entries = {key: _row_to_entry(row) for key, row in found.items()}
        return [entries.get(key) for key in keys]

    async def set(self, key: str, value: KVValue, expire_in: float | None = None) -> None:
        """Insert or fully replace an entry.

        Args:
            key: Entry key.
            value: Value to store.
            expire_in: Milliseconds until the entry expires. None for no expiry.

        Raises:
            EncodeError: If the value cannot be encoded.
            UsageError: If expire_in is not a positive number.
        """
        encoded = encode_value(value)
        now = self.clock()
        expires_at = None
        if expire_in is not None:
            if isinstance(expire_in, bool) or not isinstance(expire_in, (int, float)) or expire_in <= 0:
                raise UsageError(
                    "expire_in must be a positive number of milliseconds",
                    context={"key": key, "expire_in": expire_in},
                )
            expires_at = now + int(expire_in)

        version = generate_version()
        await self.execute(
            f"""
            INSERT INTO {self.table_name}
                (key, value_blob, value_text, value_type, version, expires_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value_blob = excluded.value_blob,
                value_text = excluded.value_text,
                value_type = excluded.value_type,
                version = excluded.version,
                expires_at = excluded.expires_at
            """,
            [key, encoded.blob, encoded.text, encoded.type.value, version, expires_at, now],
        )
        with log_context(session=self.label, operation="set"):
            logger.debug("Stored entry", key=key, type=encoded.type.value, expires_at=expires_at)

    async def delete(self, key: str) -> None:
        """Delete an entry. Deleting a missing key is not an error."""
        await self.execute(f"DELETE FROM {self.table_name} WHERE key = ?", [key])

    async def exists(self, key: str) -> bool:
        """Check whether a non-expired entry exists for key."""
        now = self.clock()
        rows = await self.execute(
            f"SELECT key, expires_at FROM {self.table_name} WHERE key = ?", [key]
        )
        if not rows:
            return False
        if _is_expired(rows[0], now):
            await self._expire([key], now)
            return False
        return True

    async def count(self, prefix: str | None = None) -> int:
        """Count non-expired entries, optionally under a key prefix."""
        sql = f"SELECT COUNT(*) AS n FROM {self.table_name} WHERE (expires_at IS NULL OR expires_at > ?)"
        args: list[Any] = [self.clock()]
        if prefix:
            sql += " AND substr(key, 1, length(?)) = ?"
            args.extend([prefix, prefix])
        rows = await self.execute(sql, args)
        return rows[0]["n"] if rows else 0

    async def cleanup_expired(self) -> int:
        """Delete every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self.clock()
        rows = await self.execute(
            f"DELETE FROM {self.table_name} "
            "WHERE expires_at IS NOT NULL AND expires_at <= ? RETURNING key",
            [now],
        )
        with log_context(session=self.label, operation="cleanup_expired"):
            logger.debug("Removed expired entries", count=len(rows))
        return len(rows)

    async def list(
        self,
        prefix: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        where: WhereInput | None = None,
        reverse: bool = False,
    ) -> list[Entry]:
        """List non-expired entries in key order.

        Args:
            prefix: Only keys starting with this exact string.
            limit: Maximum number of entries, applied after filtering and ordering.
            cursor: Reserved for pagination; currently has no effect.
            where: JSON field filter (Filter, mapping, or builder callback).
            reverse: Descending key order instead of ascending.

        Raises:
            FilterError: If where is malformed.
            UsageError: If limit is not a positive integer.
        """
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
            raise UsageError("limit must be a positive integer", context={"limit": limit})

        compiled = (
            compile_filter(where, strict_operators=self.strict_operators)
            if where is not None
            else None
        )
        if cursor is not None:
            with log_context(session=self.label, operation="list"):
                logger.warning("list() cursor is reserved and has no effect", cursor=cursor)

        sql = f"SELECT {_COLUMNS} FROM {self.table_name} WHERE (expires_at IS NULL OR expires_at > ?)"
        args: list[Any] = [self.clock()]

        if prefix:
            sql += " AND substr(key, 1, length(?)) = ?"
            args.extend([prefix, prefix])

        if compiled is not None:
            sql += f" AND {compiled.sql}"
            args.extend(compiled.args)

        sql += f" ORDER BY key {'DESC' if reverse else 'ASC'}"

        if limit is not None:
            sql += " LIMIT ?"
            args.append(limit)

        rows = await self.execute(sql, args)
        return [_row_to_entry(row) for row in rows]

    async def _expire(self, keys: list[str], now: int) -> None:
        if self.read_only:
            return
        if self.await_expiry_cleanup:
            await self._delete_expired(keys, now)
            return
        task = asyncio.create_task(self._delete_expired_quietly(keys, now))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _delete_expired(self, keys: list[str], now: int) -> None:
        # Re-check the deadline so a concurrent set() of the same key survives
        for start in range(0, len(keys), _MAX_KEYS_PER_QUERY):
            chunk = keys[start : start + _MAX_KEYS_PER_QUERY]
            placeholders = ",".join("?" for _ in chunk)
            await self.execute(
                f"DELETE FROM {self.table_name} WHERE key IN ({placeholders}) "
                "AND expires_at IS NOT NULL AND expires_at <= ?",
                [*chunk, now],
            )

    async def _delete_expired_quietly(self, keys: list[str], now: int) -> None:
        try:
            await self._delete_expired(keys, now)
        except Exception as e:
            with log_context(session=self.label, operation="expire"):
                logger.debug("Background expiry delete failed", keys=len(keys), error=str(e))

    async def drain_cleanup(self) -> None:
        """Wait for background expiry deletes started so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
