"""Tests for payload codecs."""

import struct

import pytest

from gridsync.marks import EMPTY, Mark, MarkKind
from gridsync.wire import (
    Preview,
    Update,
    WireError,
    decode_preview,
    decode_update,
    decode_varint,
    encode_preview,
    encode_update,
    encode_varint,
)


class TestVarint:
    """Tests for LEB128 integers."""

    def test_encode(self):
        assert encode_varint(0) == b"\x00"
        assert encode_varint(127) == b"\x7f"
        assert encode_varint(300) == b"\xac\x02"

    def test_decode(self):
        assert decode_varint(b"\xac\x02") == (300, 2)
        assert decode_varint(b"\x00\x05", 1) == (5, 2)

    def test_negative_rejected(self):
        with pytest.raises(WireError):
            encode_varint(-1)

    def test_truncated(self):
        with pytest.raises(WireError):
            decode_varint(b"\x80")

    def test_large_clock_values(self):
        """Test 64-bit timestamps survive encoding."""
        big = 2**63 - 1
        assert decode_varint(encode_varint(big))[0] == big


class TestUpdateCodec:
    """Tests for authoritative payloads."""

    def test_bool_layout(self):
        """Test the byte layout of a two-cell stroke."""
        update = Update(targets=(0, 1), value=Mark.of_bool(True), timestamp=1)

        data = encode_update(update, MarkKind.BOOL)

        assert data == bytes([2, 0, 1, 1, 1])
        assert decode_update(data, MarkKind.BOOL) == update

    def test_color_value(self):
        """Test color ids are length-prefixed UTF-8."""
        update = Update(targets=(300,), value=Mark.of_color("#ff8800"), timestamp=42)

        data = encode_update(update, MarkKind.COLOR)

        assert data[:3] == b"\x01\xac\x02"
        assert data[3] == 7
        assert decode_update(data, MarkKind.COLOR) == update

    def test_erase_stroke(self):
        """Test an erasing stroke encodes EMPTY."""
        update = Update(targets=(5,), value=EMPTY, timestamp=9)
        assert decode_update(encode_update(update, MarkKind.INTENSITY), MarkKind.INTENSITY) == update

    def test_trailing_bytes(self):
        with pytest.raises(WireError):
            decode_update(bytes([1, 0, 1, 1, 0]), MarkKind.BOOL)

    def test_invalid_value(self):
        """Test a bool grid rejects values other than 0 and 1."""
        with pytest.raises(WireError):
            decode_update(bytes([1, 0, 2, 1]), MarkKind.BOOL)

    def test_truncated_payload(self):
        with pytest.raises(WireError):
            decode_update(bytes([3, 0, 1]), MarkKind.BOOL)

    def test_kind_mismatch_on_encode(self):
        update = Update(targets=(0,), value=Mark.of_intensity(3), timestamp=1)
        with pytest.raises(WireError):
            encode_update(update, MarkKind.BOOL)

    def test_dict_form(self):
        """Test the JSON-friendly form."""
        update = Update(targets=(0, 1), value=Mark.of_bool(True), timestamp=1)

        assert update.to_dict(MarkKind.BOOL) == {"targets": [0, 1], "value": 1, "timestamp": 1}
        assert Update.from_dict({"targets": [0, 1], "value": 1, "timestamp": 1}, MarkKind.BOOL) == update

    def test_dict_form_malformed(self):
        with pytest.raises(WireError):
            Update.from_dict({"targets": [0]}, MarkKind.BOOL)

    def test_wire_error_is_value_error(self):
        assert issubclass(WireError, ValueError)


class TestPreviewCodec:
    """Tests for preview records."""

    def test_fixed_record(self):
        """Test integer grids use the 9-byte record."""
        preview = Preview(offset=3, timestamp=5, value=Mark.of_intensity(7))

        data = encode_preview(preview, MarkKind.INTENSITY)

        assert len(data) == 9
        assert data == struct.pack(">IIB", 3, 5, 7)
        assert decode_preview(data, MarkKind.INTENSITY) == preview

    def test_wrong_length(self):
        with pytest.raises(WireError):
            decode_preview(b"\x00" * 8, MarkKind.BOOL)

    def test_timestamp_too_large_for_record(self):
        preview = Preview(offset=0, timestamp=2**32, value=Mark.of_bool(True))
        with pytest.raises(WireError):
            encode_preview(preview, MarkKind.BOOL)

    def test_color_record(self):
        """Test color grids use varints."""
        preview = Preview(offset=12, timestamp=2**40, value=Mark.of_color("blue"))

        data = encode_preview(preview, MarkKind.COLOR)

        assert decode_preview(data, MarkKind.COLOR) == preview

    def test_bad_utf8_color(self):
        with pytest.raises(WireError):
            decode_preview(b"\x00\x01\x02\xff\xfe", MarkKind.COLOR)
