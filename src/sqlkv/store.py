"""
Store sessions.

KVStore is the root session: it owns a long-lived autocommit connection.
KVTransaction owns one open transaction on its own connection. Both expose
the same operations by delegating to a KVCore built with their executor.
"""

from __future__ import annotations

import functools
from collections.abc import Sequence
from pathlib import Path
from types import TracebackType

import aiosqlite

from sqlkv.config import MEMORY_DATABASE, validate_table_name
from sqlkv.core import KVCore
from sqlkv.engine import TransactionHandle, connect, enable_wal, initialize_schema, run_statement
from sqlkv.exceptions import ConfigurationError, SessionClosedError
from sqlkv.filters import WhereInput
from sqlkv.logging import get_logger, log_context
from sqlkv.types import Clock, Entry, KVValue, TransactionMode, generate_version, now_ms

logger = get_logger(__name__)


class KVStore:
    """Key-value store backed by one SQLite table.

    Usage:
        async with KVStore("data/kv.db") as kv:
            await kv.set("user:1", {"name": "Alice"}, expire_in=60_000)
            entry = await kv.get("user:1")
    """

    def __init__(
        self,
        database: str | Path,
        table_name: str = "kv_store",
        *,
        busy_timeout: float = 5.0,
        strict_operators: bool = True,
        default_transaction_mode: TransactionMode | str = TransactionMode.WRITE,
        clock: Clock = now_ms,
    ) -> None:
        """Initialize the store. Call init() (or use async with) before use.

        Args:
            database: SQLite database file, or ":memory:".
            table_name: Key-value table name.
            busy_timeout: Seconds to wait for a locked database.
            strict_operators: Reject unknown filter operators.
            default_transaction_mode: Mode used by transaction() when none is given.
            clock: Epoch-millisecond clock used for expiry.

        Raises:
            ConfigurationError: If table_name is not a plain identifier.
        """
        try:
            self.table_name = validate_table_name(table_name)
        except ValueError as e:
            raise ConfigurationError(str(e), context={"table_name": table_name}) from e
        self.database = str(database)
        self.busy_timeout = busy_timeout
        self.strict_operators = strict_operators
        try:
            self.default_transaction_mode = TransactionMode(default_transaction_mode)
        except ValueError as e:
            raise ConfigurationError(
                "Unknown default transaction mode",
                context={"mode": default_transaction_mode},
            ) from e
        self.clock = clock
        self._db: aiosqlite.Connection | None = None
        self._core: KVCore | None = None

    async def init(self) -> None:
        """Open the connection and create the schema if needed."""
        if self._db is not None:
            return

        if self.database != MEMORY_DATABASE:
            Path(self.database).parent.mkdir(parents=True, exist_ok=True)

        self._db = await connect(self.database, self.busy_timeout)
        try:
            if self.database != MEMORY_DATABASE:
                await enable_wal(self._db)
            await initialize_schema(self._db, self.table_name)
        except BaseException:
            await self._db.close()
            self._db = None
            raise

        self._core = KVCore(
            functools.partial(run_statement, self._db),
            self.table_name,
            await_expiry_cleanup=False,
            strict_operators=self.strict_operators,
            clock=self.clock,
            label="root",
        )
        logger.info("KV store initialized", database=self.database, table=self.table_name)

    async def close(self) -> None:
        """Wait for background cleanup, then close the connection."""
        core, self._core = self._core, None
        try:
            if core is not None:
                await core.drain_cleanup()
        finally:
            if self._db:
                await self._db.close()
                self._db = None
                logger.info("KV store closed", database=self.database)

    async def __aenter__(self) -> KVStore:
        await self.init()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._core is not None

    def _require_core(self) -> KVCore:
        if self._core is None:
            raise SessionClosedError(
                "KVStore is not open. Call init() first.",
                context={"database": self.database},
            )
        return self._core

    async def get(self, key: str) -> Entry | None:
        """Get an entry by key.

        Returns:
            The entry, or None if the key is missing or expired. Expired
            rows are deleted in the background.
        """
        return await self._require_core().get(key)

    async def get_many(self, keys: Sequence[str]) -> list[Entry | None]:
        """Get entries for several keys, one slot per key in input order."""
        return await self._require_core().get_many(keys)

    async def set(self, key: str, value: KVValue, expire_in: float | None = None) -> None:
        """Insert or replace an entry.

        Args:
            key: Entry key.
            value: str, int, float, bool, bytes-like, or any JSON-serializable value.
            expire_in: Milliseconds until the entry expires.
        """
        await self._require_core().set(key, value, expire_in=expire_in)

    async def delete(self, key: str) -> None:
        """Delete an entry. Missing keys are ignored."""
        await self._require_core().delete(key)

    async def exists(self, key: str) -> bool:
        """Check whether a non-expired entry exists."""
        return await self._require_core().exists(key)

    async def count(self, prefix: str | None = None) -> int:
        """Count non-expired entries."""
        return await self._require_core().count(prefix)

    async def cleanup_expired(self) -> int:
        """Delete all expired entries and return how many were removed."""
        removed = await self._require_core().cleanup_expired()
        if removed:
            logger.info("Expired entries cleaned up", count=removed)
        return removed

    async def list(
        self,
        prefix: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        where: WhereInput | None = None,
        reverse: bool = False,
    ) -> list[Entry]:
        """List non-expired entries ordered by key.

        Args:
            prefix: Only keys starting with this exact string.
            limit: Maximum number of entries.
            cursor: Reserved for pagination; logs a warning and has no effect.
            where: JSON field filter: a Filter, a {"field", "operator", "value"}
                mapping, or a callback receiving a FilterBuilder.
            reverse: Descending key order.
        """
        return await self._require_core().list(
            prefix=prefix, limit=limit, cursor=cursor, where=where, reverse=reverse
        )

    async def drain_cleanup(self) -> None:
        """Wait for background expiry deletes to finish."""
        await self._require_core().drain_cleanup()

    async def transaction(self, mode: TransactionMode | str | None = None) -> KVTransaction:
        """Start a transaction on a dedicated connection.

        Args:
            mode: "write", "read" or "deferred". Defaults to the store's
                default_transaction_mode.

        Raises:
            UsageError: For in-memory databases or unknown modes.
        """
        self._require_core()
        effective_mode = mode if mode is not None else self.default_transaction_mode
        handle = await TransactionHandle.begin(self.database, effective_mode, self.busy_timeout)
        tx = KVTransaction(
            handle,
            self.table_name,
            strict_operators=self.strict_operators,
            clock=self.clock,
        )
        with log_context(session=tx.id, operation="begin"):
            logger.debug("Transaction started", mode=handle.mode.value)
        return tx


class KVTransaction:
    """Store operations inside one SQLite transaction.

    Writes are visible to this transaction immediately and to other
    sessions after commit(). Expired rows seen on a read are deleted
    before the read returns. After commit(), rollback() or close() every
    operation raises SessionClosedError.

    As an async context manager it commits on success and rolls back
    if the block raises.
    """

    def __init__(
        self,
        handle: TransactionHandle,
        table_name: str,
        *,
        strict_operators: bool = True,
        clock: Clock = now_ms,
    ) -> None:
        self.id = f"tx_{generate_version()}"
        self._handle = handle
        self._core: KVCore | None = KVCore(
            handle.execute,
            table_name,
            await_expiry_cleanup=True,
            read_only=handle.mode is TransactionMode.READ,
            strict_operators=strict_operators,
            clock=clock,
            label=self.id,
        )

    @property
    def mode(self) -> TransactionMode:
        return self._handle.mode

    @property
    def is_open(self) -> bool:
        return self._core is not None

    def _require_core(self) -> KVCore:
        if self._core is None:
            raise SessionClosedError(
                "Transaction is already finished", context={"transaction": self.id}
            )
        return self._core

    async def get(self, key: str) -> Entry | None:
        return await self._require_core().get(key)

    async def get_many(self, keys: Sequence[str]) -> list[Entry | None]:
        return await self._require_core().get_many(keys)

    async def set(self, key: str, value: KVValue, expire_in: float | None = None) -> None:
        await self._require_core().set(key, value, expire_in=expire_in)

    async def delete(self, key: str) -> None:
        await self._require_core().delete(key)

    async def exists(self, key: str) -> bool:
        return await self._require_core().exists(key)

    async def count(self, prefix: str | None = None) -> int:
        return await self._require_core().count(prefix)

    async def cleanup_expired(self) -> int:
        return await self._require_core().cleanup_expired()

    async def list(
        self,
        prefix: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        where: WhereInput | None = None,
        reverse: bool = False,
    ) -> list[Entry]:
        return await self._require_core().list(
            prefix=prefix, limit=limit, cursor=cursor, where=where, reverse=reverse
        )

    async def commit(self) -> None:
        """Commit and release the transaction."""
        self._require_core()
        self._core = None
        await self._handle.commit()
        with log_context(session=self.id, operation="commit"):
            logger.debug("Transaction committed")

    async def rollback(self) -> None:
        """Roll back and release the transaction."""
        self._require_core()
        self._core = None
        await self._handle.rollback()
        with log_context(session=self.id, operation="rollback"):
            logger.debug("Transaction rolled back")

    async def close(self) -> None:
        """Release the transaction, rolling back uncommitted writes."""
        self._require_core()
        self._core = None
        await self._handle.close()

    async def __aenter__(self) -> KVTransaction:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._core is None:
            return
        if exc_type is None:
            await self.commit()
        else:
            self._core = None
            await self._handle.close()
