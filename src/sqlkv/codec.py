"""
Value codec.

Converts between Python values and the flat (blob, text, type) columns of a
stored row. Decoding dispatches only on the stored type tag.

Numbers are stored as str(int) for integers and repr(float) for floats, the
shortest text that parses back to the same float. NaN and infinities are
rejected at encode time.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import orjson

from sqlkv.exceptions import DecodeError, EncodeError
from sqlkv.types import KVValue, ValueType

_BOOLEAN_TEXT = {"true": True, "false": False}


@dataclass(frozen=True)
class EncodedValue:
    """Storage columns for a single value."""

    blob: bytes | None
    text: str | None
    type: ValueType


def encode_value(value: KVValue) -> EncodedValue:
    """Encode a value into storage columns.

    Args:
        value: The value to store.

    Returns:
        EncodedValue with exactly one of blob/text set.

    Raises:
        EncodeError: If the value is a non-finite number or cannot be
            serialized as JSON.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        # bytes() of a memoryview copies only the viewed range
        return EncodedValue(blob=bytes(value), text=None, type=ValueType.BINARY)
    if isinstance(value, str):
        return EncodedValue(blob=None, text=value, type=ValueType.STRING)
    if isinstance(value, bool):
        return EncodedValue(
            blob=None, text="true" if value else "false", type=ValueType.BOOLEAN
        )
    if isinstance(value, int):
        return EncodedValue(blob=None, text=str(int(value)), type=ValueType.NUMBER)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodeError(
                "Cannot store a non-finite number",
                context={"value_type": "float", "reason": repr(value)},
            )
        return EncodedValue(blob=None, text=repr(float(value)), type=ValueType.NUMBER)
    return EncodedValue(blob=None, text=_dump_json(value), type=ValueType.JSON)


def _has_non_finite(value: Any) -> bool:
    if isinstance(value, float):
        return not math.isfinite(value)
    if isinstance(value, Mapping):
        return any(_has_non_finite(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return any(_has_non_finite(item) for item in value)
    return False


def _dump_json(value: Any) -> str:
    # orjson writes NaN and infinities as null
    if _has_non_finite(value):
        raise EncodeError(
            "Cannot store a non-finite number inside a JSON value",
            context={"value_type": type(value).__name__},
        )
    try:
        return orjson.dumps(value, option=orjson.OPT_SORT_KEYS).decode("utf-8")
    except TypeError as e:
        raise EncodeError(
            "Value is not JSON serializable",
            context={"value_type": type(value).__name__, "reason": str(e)},
        ) from e


def decode_value(row: Mapping[str, Any]) -> Any:
    """Decode a stored row back into a Python value.

    Args:
        row: Mapping with value_type, value_blob and value_text columns.

    Returns:
        The decoded value. Binary values come back as bytes.

    Raises:
        DecodeError: If the row shape doesn't match its type tag.
    """
    if not any(col in row for col in ("value_type", "value_blob", "value_text")):
        raise DecodeError("Invalid row format for decoding value")

    raw_type = row.get("value_type")
    key = row.get("key")
    try:
        value_type = ValueType(raw_type)
    except ValueError:
        raise DecodeError(
            "Unknown stored value type", context={"value_type": raw_type, "key": key}
        ) from None

    if value_type is ValueType.BINARY:
        blob = row.get("value_blob")
        if blob is None:
            raise DecodeError(
                "Binary row has no blob", context={"value_type": raw_type, "key": key}
            )
        return bytes(blob)

    text = row.get("value_text")
    if text is None:
        raise DecodeError(
            "Row has no text payload", context={"value_type": raw_type, "key": key}
        )

    if value_type is ValueType.STRING:
        return text
    if value_type is ValueType.BOOLEAN:
        if text not in _BOOLEAN_TEXT:
            raise DecodeError(
                "Malformed boolean payload", context={"value_type": raw_type, "key": key}
            )
        return _BOOLEAN_TEXT[text]
    if value_type is ValueType.NUMBER:
        return _parse_number(text, key)
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError as e:
        raise DecodeError(
            "Malformed JSON payload", context={"value_type": raw_type, "key": key}
        ) from e


def _parse_number(text: str, key: Any) -> int | float:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        raise DecodeError(
            "Malformed number payload", context={"value_type": "number", "key": key}
        ) from None
    if not math.isfinite(number):
        raise DecodeError(
            "Malformed number payload", context={"value_type": "number", "key": key}
        )
    return number
