"""
Custom exception hierarchy for the key-value store.

All exceptions inherit from KVError, which provides optional context
for structured error handling and logging. Errors raised by the SQLite
driver itself are not wrapped and reach the caller unchanged.
"""

from __future__ import annotations

from typing import Any


class KVError(Exception):
    """Base exception for all key-value store errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(KVError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Table name that is not a plain SQL identifier
        - Unknown default transaction mode
    """

    pass


class EncodeError(KVError):
    """Raised when a value cannot be encoded for storage.

    Context should include:
        - value_type: The Python type of the rejected value
        - reason: Why encoding failed
    """

    pass


class DecodeError(KVError):
    """Raised when a stored row cannot be decoded.

    Signals storage corruption, schema drift, or rows written without the codec.

    Context should include:
        - value_type: The stored type tag, if any
        - key: The row key, if known
    """

    pass


class UsageError(KVError):
    """Raised when an operation is called with invalid arguments."""

    pass


class FilterError(UsageError):
    """Raised when a filter expression is malformed.

    Context should include:
        - field: The offending field name, if any
        - operator: The offending operator, if any
    """

    pass


class SessionClosedError(KVError):
    """Raised when an operation is attempted on a closed session.

    Applies to a root store after close() and to a transaction after
    commit(), rollback() or close().
    """

    pass
