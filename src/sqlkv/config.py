"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates fields and provides typed access to settings.
"""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sqlkv.types import TransactionMode

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

MEMORY_DATABASE = ":memory:"


def validate_table_name(name: str) -> str:
    """Check that a table name is a plain SQL identifier.

    Table names are interpolated into statements, so anything beyond
    letters, digits and underscores is rejected.
    """
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(
            f"table name must be a plain SQL identifier, got {name!r}"
        )
    return name


class Settings(BaseSettings):
    """Store settings loaded from environment variables.

    Optional:
        KV_DATABASE_PATH: SQLite database file (or ":memory:")
        KV_TABLE_NAME: Name of the key-value table
        KV_BUSY_TIMEOUT: Seconds to wait for a locked database
        KV_DEFAULT_TRANSACTION_MODE: Default mode for new transactions
        KV_STRICT_OPERATORS: Reject unknown filter operators instead of using "="
        LOG_LEVEL: Logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    KV_DATABASE_PATH: str = Field(
        default=".cache/kv.db", description="SQLite database file or :memory:"
    )
    KV_TABLE_NAME: str = Field(default="kv_store", description="Key-value table name")
    KV_BUSY_TIMEOUT: float = Field(
        default=5.0, ge=0.0, description="Seconds to wait for a locked database"
    )
    KV_DEFAULT_TRANSACTION_MODE: TransactionMode = Field(
        default=TransactionMode.WRITE, description="Default transaction mode"
    )
    KV_STRICT_OPERATORS: bool = Field(
        default=True, description="Reject unknown filter operators"
    )

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @field_validator("KV_TABLE_NAME")
    @classmethod
    def validate_kv_table_name(cls, v: str) -> str:
        """Validate that the table name is safe to interpolate."""
        return validate_table_name(v)

    @property
    def is_memory_database(self) -> bool:
        """Whether the configured database lives only in memory."""
        return self.KV_DATABASE_PATH == MEMORY_DATABASE

    def ensure_directories(self) -> None:
        """Create the database's parent directory if it doesn't exist."""
        if not self.is_memory_database:
            Path(self.KV_DATABASE_PATH).parent.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | float | bool]:
        """Return settings for display."""
        return {
            "KV_DATABASE_PATH": self.KV_DATABASE_PATH,
            "KV_TABLE_NAME": self.KV_TABLE_NAME,
            "KV_BUSY_TIMEOUT": self.KV_BUSY_TIMEOUT,
            "KV_DEFAULT_TRANSACTION_MODE": self.KV_DEFAULT_TRANSACTION_MODE.value,
            "KV_STRICT_OPERATORS": self.KV_STRICT_OPERATORS,
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
