"""Payload types and binary codecs for the two transport channels.

Authoritative payload::

    varint count | varint offset * count | value | varint timestamp

where ``value`` is a varint for bool/intensity grids and a varint length
followed by UTF-8 bytes for color grids.

Preview payload for bool/intensity grids is a fixed 9-byte big-endian
record (u32 offset, u32 timestamp, u8 value). Color grids use varints for
offset and timestamp followed by the length-prefixed color id.
"""

import struct
from dataclasses import dataclass
from typing import Any

from .marks import Mark, MarkKind

PREVIEW_RECORD = struct.Struct(">IIB")
MAX_U32 = 0xFFFFFFFF
MAX_TARGETS = 1 << 20


class WireError(ValueError):
    """Raised when a payload cannot be encoded or decoded."""


@dataclass(frozen=True)
class Update:
    """One committed stroke: every target shares value and timestamp."""

    targets: tuple[int, ...]
    value: Mark
    timestamp: int

    def to_dict(self, kind: MarkKind) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "targets": list(self.targets),
            "value": kind.to_wire(self.value),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], kind: MarkKind) -> "Update":
        """Create from dictionary. The timestamp is validated by the replica."""
        try:
            return cls(
                targets=tuple(data["targets"]),
                value=kind.from_wire(data["value"]),
                timestamp=data["timestamp"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise WireError(f"Malformed update: {e}") from e


@dataclass(frozen=True)
class Preview:
    """Provisional single-cell write sent while a stroke is in progress."""

    offset: int
    timestamp: int
    value: Mark


def encode_varint(number: int) -> bytes:
    """Encode a non-negative integer as LEB128."""
    if number < 0:
        raise WireError(f"Cannot encode negative varint: {number}")
    out = bytearray()
    while True:
        byte = number & 0x7F
        number >>= 7
        if number:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, pos: int = 0) -> tuple[int, int]:
    """Decode a LEB128 integer.

    Returns:
        Tuple of (value, position after the varint).
    """
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise WireError("Truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7
        if shift > 63:
            raise WireError("Varint longer than 64 bits")


def _encode_value(mark: Mark, kind: MarkKind) -> bytes:
    try:
        raw = kind.to_wire(mark)
    except ValueError as e:
        raise WireError(str(e)) from e
    if isinstance(raw, str):
        encoded = raw.encode("utf-8")
        return encode_varint(len(encoded)) + encoded
    return encode_varint(raw)


def _decode_value(data: bytes, pos: int, kind: MarkKind) -> tuple[Mark, int]:
    if kind is MarkKind.COLOR:
        length, pos = decode_varint(data, pos)
        end = pos + length
        if end > len(data):
            raise WireError("Truncated color id")
        try:
            raw: int | str = data[pos:end].decode("utf-8")
        except UnicodeDecodeError as e:
            raise WireError(f"Color id is not UTF-8: {e}") from e
        pos = end
    else:
        raw, pos = decode_varint(data, pos)
    try:
        return kind.from_wire(raw), pos
    except ValueError as e:
        raise WireError(str(e)) from e


def encode_update(update: Update, kind: MarkKind) -> bytes:
    """Serialize an authoritative update."""
    parts = [encode_varint(len(update.targets))]
    parts.extend(encode_varint(offset) for offset in update.targets)
    parts.append(_encode_value(update.value, kind))
    parts.append(encode_varint(update.timestamp))
    return b"".join(parts)


def decode_update(data: bytes, kind: MarkKind) -> Update:
    """Parse an authoritative update."""
    count, pos = decode_varint(data)
    if count > MAX_TARGETS:
        raise WireError(f"Too many targets: {count}")
    targets = []
    for _ in range(count):
        offset, pos = decode_varint(data, pos)
        targets.append(offset)
    value, pos = _decode_value(data, pos, kind)
    timestamp, pos = decode_varint(data, pos)
    if pos != len(data):
        raise WireError(f"Trailing bytes after update: {len(data) - pos}")
    return Update(targets=tuple(targets), value=value, timestamp=timestamp)


def encode_preview(preview: Preview, kind: MarkKind) -> bytes:
    """Serialize a preview record."""
    if kind is MarkKind.COLOR:
        return (
            encode_varint(preview.offset)
            + encode_varint(preview.timestamp)
            + _encode_value(preview.value, kind)
        )
    if not 0 <= preview.offset <= MAX_U32 or not 0 <= preview.timestamp <= MAX_U32:
        raise WireError(f"Preview does not fit a 9-byte record: {preview}")
    try:
        raw = kind.to_wire(preview.value)
    except ValueError as e:
        raise WireError(str(e)) from e
    return PREVIEW_RECORD.pack(preview.offset, preview.timestamp, raw)


def decode_preview(data: bytes, kind: MarkKind) -> Preview:
    """Parse a preview record."""
    if kind is MarkKind.COLOR:
        offset, pos = decode_varint(data)
        timestamp, pos = decode_varint(data, pos)
        value, pos = _decode_value(data, pos, kind)
        if pos != len(data):
            raise WireError("Trailing bytes after preview")
        return Preview(offset=offset, timestamp=timestamp, value=value)
    if len(data) != PREVIEW_RECORD.size:
        raise WireError(f"Preview record must be {PREVIEW_RECORD.size} bytes, got {len(data)}")
    offset, timestamp, raw = PREVIEW_RECORD.unpack(data)
    try:
        value = kind.from_wire(raw)
    except ValueError as e:
        raise WireError(str(e)) from e
    return Preview(offset=offset, timestamp=timestamp, value=value)
