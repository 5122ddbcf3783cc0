"""
SQLite engine adapter built on aiosqlite.

Everything the store needs from the database goes through two shapes:
- an executor: ``await execute(sql, args) -> list[dict]``
- a TransactionHandle: an executor bound to one open transaction, plus
  commit/rollback/close

Connections run with isolation_level=None so the root connection
autocommits every statement and transactions are started explicitly.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Awaitable, Callable

import aiosqlite

from sqlkv.exceptions import SessionClosedError, UsageError
from sqlkv.logging import get_logger
from sqlkv.types import TransactionMode

logger = get_logger(__name__)

Row = dict[str, Any]
Executor = Callable[[str, Sequence[Any]], Awaitable[list[Row]]]

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    key TEXT PRIMARY KEY,
    value_blob BLOB,
    value_text TEXT,
    value_type TEXT CHECK(value_type IN ('json', 'string', 'number', 'binary', 'boolean')),
    version TEXT NOT NULL,
    expires_at INTEGER,
    created_at INTEGER DEFAULT (CAST((julianday('now') - 2440587.5) * 86400000 AS INTEGER))
)
"""

INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_{table}_expires ON {table}(expires_at)"

_BEGIN_SQL = {
    TransactionMode.WRITE: "BEGIN IMMEDIATE",
    TransactionMode.READ: "BEGIN DEFERRED",
    TransactionMode.DEFERRED: "BEGIN DEFERRED",
}


async def connect(database: str, busy_timeout: float) -> aiosqlite.Connection:
    """Open an autocommit connection with dict-friendly rows."""
    connection = await aiosqlite.connect(
        database, timeout=busy_timeout, isolation_level=None
    )
    connection.row_factory = aiosqlite.Row
    return connection


async def initialize_schema(connection: aiosqlite.Connection, table: str) -> None:
    """Create the key-value table and expiry index if needed."""
    await connection.execute(SCHEMA_SQL.format(table=table))
    await connection.execute(INDEX_SQL.format(table=table))


async def enable_wal(connection: aiosqlite.Connection) -> None:
    """Switch a file database to WAL so readers don't block on a writer."""
    async with connection.execute("PRAGMA journal_mode=WAL") as cursor:
        await cursor.fetchone()


async def run_statement(
    connection: aiosqlite.Connection, sql: str, args: Sequence[Any]
) -> list[Row]:
    """Execute one parameterized statement and return all rows as dicts."""
    async with connection.execute(sql, tuple(args)) as cursor:
        rows = await cursor.fetchall()
    return [dict(row) for row in rows]


class TransactionHandle:
    """One open SQLite transaction on a dedicated connection.

    The handle is single-use: after commit(), rollback() or close() the
    connection is released and execute() raises SessionClosedError.
    """

    def __init__(self, connection: aiosqlite.Connection, mode: TransactionMode) -> None:
        self._connection: aiosqlite.Connection | None = connection
        self.mode = mode

    @classmethod
    async def begin(
        cls, database: str, mode: TransactionMode | str, busy_timeout: float
    ) -> TransactionHandle:
        """Open a connection and start a transaction in the given mode.

        Args:
            database: SQLite database file.
            mode: write (BEGIN IMMEDIATE), read (query-only, BEGIN DEFERRED)
                or deferred (BEGIN DEFERRED).
            busy_timeout: Seconds to wait for a locked database.

        Raises:
            UsageError: For in-memory databases or unknown modes.
        """
        if database == ":memory:":
            raise UsageError(
                "Transactions need a file database; an in-memory database "
                "is private to its connection",
                context={"database": database},
            )
        try:
            mode = TransactionMode(mode)
        except ValueError:
            raise UsageError(
                "Unknown transaction mode",
                context={"mode": mode, "allowed": [m.value for m in TransactionMode]},
            ) from None

        connection = await connect(database, busy_timeout)
        try:
            if mode is TransactionMode.READ:
                await connection.execute("PRAGMA query_only = ON")
            await connection.execute(_BEGIN_SQL[mode])
        except BaseException:
            await connection.close()
            raise
        return cls(connection, mode)

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise SessionClosedError("Transaction is already finished")
        return self._connection

    async def execute(self, sql: str, args: Sequence[Any]) -> list[Row]:
        return await run_statement(self._require_connection(), sql, args)

    async def commit(self) -> None:
        connection = self._require_connection()
        try:
            await connection.execute("COMMIT")
        finally:
            await self._release()

    async def rollback(self) -> None:
        connection = self._require_connection()
        try:
            await connection.execute("ROLLBACK")
        finally:
            await self._release()

    async def close(self) -> None:
        """Release the connection, rolling back anything uncommitted."""
        connection = self._connection
        if connection is None:
            return
        try:
            if connection.in_transaction:
                await connection.execute("ROLLBACK")
        finally:
            await self._release()

    async def _release(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()
