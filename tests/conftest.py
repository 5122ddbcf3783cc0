"""
Pytest configuration and fixtures for sqlkv tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator, Awaitable, Callable, Generator
from unittest.mock import patch

import aiosqlite
import pytest

from sqlkv.config import Settings, clear_settings_cache
from sqlkv.store import KVStore

START_MS = 1_700_000_000_000


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    return temp_dir / "data" / "kv.db"


@pytest.fixture
def stored_keys(db_path: Path) -> Callable[..., Awaitable[list[str]]]:
    """Read keys physically present in the table, expired or not."""

    async def read(table: str = "kv_store") -> list[str]:
        async with aiosqlite.connect(db_path) as db:
            async with db.execute(f"SELECT key FROM {table} ORDER BY key") as cursor:
                rows = await cursor.fetchall()
        return [row[0] for row in rows]

    return read


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def kv(db_path: Path, clock: FakeClock) -> AsyncGenerator[KVStore, None]:
    """Create an initialized store driven by the fake clock."""
    store = KVStore(db_path, clock=clock)
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "KV_DATABASE_PATH": str(temp_dir / "env" / "kv.db"),
        "KV_TABLE_NAME": "test_kv",
        "KV_BUSY_TIMEOUT": "2.5",
        "KV_DEFAULT_TRANSACTION_MODE": "deferred",
        "KV_STRICT_OPERATORS": "false",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration."""
    from sqlkv.config import get_settings

    settings = get_settings()
    settings.ensure_directories()
    yield settings
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
