"""
Tests for the value codec.
"""

from __future__ import annotations

import pytest

from sqlkv.codec import EncodedValue, decode_value, encode_value
from sqlkv.exceptions import DecodeError, EncodeError
from sqlkv.types import ValueType


def _row(encoded: EncodedValue) -> dict[str, object]:
    return {
        "key": "k",
        "value_blob": encoded.blob,
        "value_text": encoded.text,
        "value_type": encoded.type.value,
    }


class TestEncoding:
    """Test how values map onto storage columns."""

    def test_string(self) -> None:
        encoded = encode_value("hello")
        assert encoded == EncodedValue(blob=None, text="hello", type=ValueType.STRING)

    def test_integer(self) -> None:
        encoded = encode_value(42)
        assert encoded.type is ValueType.NUMBER
        assert encoded.text == "42"

    def test_float_uses_shortest_repr(self) -> None:
        encoded = encode_value(0.1)
        assert encoded.text == "0.1"

    def test_boolean_is_not_a_number(self) -> None:
        assert encode_value(True) == EncodedValue(blob=None, text="true", type=ValueType.BOOLEAN)
        assert encode_value(False).text == "false"

    def test_json_keys_are_sorted(self) -> None:
        encoded = encode_value({"b": 1, "a": [1, 2]})
        assert encoded.type is ValueType.JSON
        assert encoded.text == '{"a":[1,2],"b":1}'

    def test_none_is_json_null(self) -> None:
        encoded = encode_value(None)
        assert encoded.type is ValueType.JSON
        assert encoded.text == "null"

    def test_binary(self) -> None:
        encoded = encode_value(b"\x00\x01\xff")
        assert encoded == EncodedValue(blob=b"\x00\x01\xff", text=None, type=ValueType.BINARY)

    def test_memoryview_copies_only_its_range(self) -> None:
        backing = bytearray(b"secret-PAYLOAD-secret")
        view = memoryview(backing)[7:14]

        encoded = encode_value(view)

        assert encoded.blob == b"PAYLOAD"
        assert isinstance(encoded.blob, bytes)

    def test_bytearray(self) -> None:
        assert encode_value(bytearray(b"abc")).blob == b"abc"

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_numbers_rejected(self, value: float) -> None:
        with pytest.raises(EncodeError):
            encode_value(value)
        with pytest.raises(EncodeError):
            encode_value({"x": value})
        with pytest.raises(EncodeError):
            encode_value({"outer": [1, {"inner": (2.0, value)}]})

    def test_unserializable_value_rejected(self) -> None:
        with pytest.raises(EncodeError) as exc_info:
            encode_value({1, 2, 3})
        assert exc_info.value.context["value_type"] == "set"


class TestRoundTrip:
    """Test decode(encode(v)) == v."""

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "unicode ✓ text",
            0,
            -17,
            2**70,
            3.14159,
            -0.5,
            1e-300,
            True,
            False,
            {"name": "Alice", "tags": ["a", "b"], "nested": {"x": None}},
            [1, "two", 3.0, False],
            None,
            b"\x00binary\xff",
        ],
    )
    def test_round_trip(self, value: object) -> None:
        decoded = decode_value(_row(encode_value(value)))
        assert decoded == value
        assert type(decoded) is type(value)

    def test_integer_stays_integer(self) -> None:
        assert isinstance(decode_value(_row(encode_value(10))), int)

    def test_float_with_integral_value_stays_float(self) -> None:
        decoded = decode_value(_row(encode_value(2.0)))
        assert decoded == 2.0
        assert isinstance(decoded, float)

    def test_tuple_decodes_as_list(self) -> None:
        assert decode_value(_row(encode_value((1, 2)))) == [1, 2]


class TestDecodeErrors:
    """Test that malformed rows fail loudly."""

    def test_empty_row(self) -> None:
        with pytest.raises(DecodeError):
            decode_value({"key": "k"})

    def test_unknown_type(self) -> None:
        with pytest.raises(DecodeError) as exc_info:
            decode_value({"key": "k", "value_type": "xml", "value_text": "<a/>"})
        assert exc_info.value.context["value_type"] == "xml"

    def test_missing_type_with_text(self) -> None:
        with pytest.raises(DecodeError):
            decode_value({"value_type": None, "value_text": "hello", "value_blob": None})

    def test_binary_without_blob(self) -> None:
        with pytest.raises(DecodeError):
            decode_value({"value_type": "binary", "value_blob": None, "value_text": "x"})

    def test_text_type_without_text(self) -> None:
        with pytest.raises(DecodeError):
            decode_value({"value_type": "string", "value_blob": None, "value_text": None})

    def test_malformed_json(self) -> None:
        with pytest.raises(DecodeError):
            decode_value({"value_type": "json", "value_blob": None, "value_text": "{oops"})

    def test_malformed_number(self) -> None:
        with pytest.raises(DecodeError):
            decode_value({"value_type": "number", "value_blob": None, "value_text": "abc"})

    def test_malformed_boolean(self) -> None:
        with pytest.raises(DecodeError):
            decode_value({"value_type": "boolean", "value_blob": None, "value_text": "yes"})

    def test_decode_never_sniffs_content(self) -> None:
        row = {"value_type": "string", "value_blob": None, "value_text": '{"a": 1}'}
        assert decode_value(row) == '{"a": 1}'
