"""
Tests for structured logging.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from sqlkv.logging import (
    JSONFormatter,
    get_logger,
    get_operation,
    get_session,
    log_context,
    setup_logging,
)


class TestLogContext:
    """Test scoped context variables."""

    def test_context_is_scoped(self) -> None:
        assert get_session() is None

        with log_context(session="tx_1", operation="get"):
            assert get_session() == "tx_1"
            assert get_operation() == "get"
            with log_context(operation="set"):
                assert get_session() == "tx_1"
                assert get_operation() == "set"
            assert get_operation() == "get"

        assert get_session() is None
        assert get_operation() is None


class TestJSONLogging:
    """Test JSON Lines output."""

    def test_records_include_context_and_fields(self, temp_dir: Path) -> None:
        log_file = temp_dir / "logs" / "kv.jsonl"
        setup_logging(log_level="DEBUG", log_file=log_file, console_output=False)
        try:
            logger = get_logger("tests")
            with log_context(session="root", operation="cleanup_expired"):
                logger.info("Removed expired entries", count=3)

            for handler in logging.getLogger("sqlkv").handlers:
                handler.flush()

            record = json.loads(log_file.read_text().splitlines()[-1])
        finally:
            setup_logging(console_output=False)

        assert record["logger"] == "sqlkv.tests"
        assert record["message"] == "Removed expired entries"
        assert record["session"] == "root"
        assert record["operation"] == "cleanup_expired"
        assert record["extra"]["count"] == 3

    def test_formatter_includes_exception(self) -> None:
        try:
            raise ValueError("bad row")
        except ValueError:
            import sys

            record = logging.LogRecord(
                "sqlkv.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )

        output = json.loads(JSONFormatter().format(record))
        assert "ValueError: bad row" in output["exception"]
