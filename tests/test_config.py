"""
Tests for configuration module.
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from sqlkv.config import Settings, clear_settings_cache, get_settings
from sqlkv.types import TransactionMode


class TestSettingsValidation:
    """Tests for Settings validation."""

    def test_settings_loads_from_env(self, mock_env_vars: dict[str, str]) -> None:
        """Test that settings correctly loads from environment variables."""
        settings = get_settings()

        assert settings.KV_DATABASE_PATH == mock_env_vars["KV_DATABASE_PATH"]
        assert settings.KV_TABLE_NAME == "test_kv"
        assert settings.KV_BUSY_TIMEOUT == 2.5
        assert settings.KV_DEFAULT_TRANSACTION_MODE is TransactionMode.DEFERRED
        assert settings.KV_STRICT_OPERATORS is False
        assert settings.LOG_LEVEL == "DEBUG"

    def test_defaults(self) -> None:
        """Test defaults when nothing is configured."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.KV_DATABASE_PATH == ".cache/kv.db"
        assert settings.KV_TABLE_NAME == "kv_store"
        assert settings.KV_DEFAULT_TRANSACTION_MODE is TransactionMode.WRITE
        assert settings.KV_STRICT_OPERATORS is True
        assert not settings.is_memory_database

    @pytest.mark.parametrize("name", ["kv store", "kv;drop", "1kv", ""])
    def test_table_name_must_be_identifier(self, name: str) -> None:
        with patch.dict(os.environ, {"KV_TABLE_NAME": name}, clear=False):
            with pytest.raises(ValidationError) as exc_info:
                Settings(_env_file=None)

        assert "identifier" in str(exc_info.value)

    def test_invalid_transaction_mode(self) -> None:
        with patch.dict(os.environ, {"KV_DEFAULT_TRANSACTION_MODE": "exclusive"}, clear=False):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_negative_busy_timeout(self) -> None:
        with patch.dict(os.environ, {"KV_BUSY_TIMEOUT": "-1"}, clear=False):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)


class TestSettingsHelpers:
    """Tests for settings helper methods."""

    def test_ensure_directories(self, mock_settings: Settings) -> None:
        assert Path(mock_settings.KV_DATABASE_PATH).parent.is_dir()

    def test_memory_database(self) -> None:
        with patch.dict(os.environ, {"KV_DATABASE_PATH": ":memory:"}, clear=False):
            settings = Settings(_env_file=None)

        assert settings.is_memory_database
        settings.ensure_directories()

    def test_display(self, mock_env_vars: dict[str, str]) -> None:
        display = get_settings().redacted_display()

        assert display["KV_TABLE_NAME"] == "test_kv"
        assert display["KV_DEFAULT_TRANSACTION_MODE"] == "deferred"

    def test_settings_are_cached(self, mock_env_vars: dict[str, str]) -> None:
        assert get_settings() is get_settings()
        clear_settings_cache()
        assert get_settings().KV_TABLE_NAME == "test_kv"
