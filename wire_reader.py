"""
Protobuf wire format reader.

Low-level helpers that decode a single varint or a single field from a byte
buffer. Nothing here interprets payloads beyond the wire type; callers decide
whether a fixed64 is a double or a length-delimited span is a string.
"""

import struct
from enum import IntEnum
from typing import NamedTuple, Tuple, Union

from const import MAX_VARINT_SHIFT, UINT64_MASK
from proto_errors import MalformedVarintError, TruncatedBufferError, UnsupportedWireTypeError


class WireType(IntEnum):
    VARINT = 0
    FIXED64 = 1
    LENGTH_DELIMITED = 2
    START_GROUP = 3  # Deprecated
    END_GROUP = 4    # Deprecated
    FIXED32 = 5


class WireField(NamedTuple):
    """One decoded field: tag parts, raw payload and the offset after it."""
    field_number: int
    wire_type: WireType
    value: Union[int, bytes]
    offset: int


def read_varint(buffer: bytes, offset: int) -> Tuple[int, int]:
    """Read a base-128 varint starting at offset.

    Returns:
        Tuple of (value, new_offset)
    """
    value = 0
    shift = 0
    pos = offset
    while True:
        if pos >= len(buffer):
            raise TruncatedBufferError(f"Buffer ended inside varint starting at offset {offset}", offset)
        byte = buffer[pos]
        value |= (byte & 0x7F) << shift
        pos += 1
        if not byte & 0x80:
            return value & UINT64_MASK, pos
        shift += 7
        if shift >= MAX_VARINT_SHIFT:
            raise MalformedVarintError(f"Varint too long at offset {offset}", offset)


def _read_span(buffer: bytes, offset: int, length: int, what: str) -> bytes:
    end = offset + length
    if end > len(buffer):
        raise TruncatedBufferError(
            f"Insufficient data for {what} at offset {offset}: need {length}, have {len(buffer) - offset}",
            offset,
        )
    return bytes(buffer[offset:end])


def read_field(buffer: bytes, offset: int) -> WireField:
    """Read the tag and payload of the field starting at offset."""
    tag, pos = read_varint(buffer, offset)
    field_number = tag >> 3
    raw_wire_type = tag & 0x7

    if raw_wire_type == WireType.VARINT:
        value, pos = read_varint(buffer, pos)
    elif raw_wire_type == WireType.FIXED64:
        value = _read_span(buffer, pos, 8, "64-bit field")
        pos += 8
    elif raw_wire_type == WireType.LENGTH_DELIMITED:
        length, pos = read_varint(buffer, pos)
        value = _read_span(buffer, pos, length, "length-delimited field")
        pos += length
    elif raw_wire_type == WireType.FIXED32:
        value = _read_span(buffer, pos, 4, "32-bit field")
        pos += 4
    else:
        # start/end group and the unassigned values 6, 7
        raise UnsupportedWireTypeError(raw_wire_type, offset)

    return WireField(field_number, WireType(raw_wire_type), value, pos)


def unpack_double(raw: bytes) -> float:
    return struct.unpack("<d", raw)[0]


def unpack_float(raw: bytes) -> float:
    return struct.unpack("<f", raw)[0]


def format_fixed(raw: bytes) -> str:
    """Render a fixed32/fixed64 payload as 0x-prefixed hex, byte order kept."""
    return f"0x{raw.hex()}"


def format_bytes(raw: bytes) -> str:
    """Render an opaque byte span as "[bytes: aa bb cc]"."""
    return f"[bytes: {raw.hex(' ')}]"
