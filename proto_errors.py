"""
Error taxonomy for the wire decoders.

Wire faults derive from google.protobuf's DecodeError so callers can handle
them next to errors raised by generated message classes.
"""

from google.protobuf.message import DecodeError


class WireDecodeError(DecodeError):
    """Base class for faults found while reading wire data."""

    def __init__(self, message: str, offset: int = -1):
        super().__init__(message)
        self.offset = offset


class TruncatedBufferError(WireDecodeError):
    """Fewer bytes remain than a varint, width or length field requires."""


class MalformedVarintError(WireDecodeError):
    """A varint continuation chain runs past 64 bits."""


class UnsupportedWireTypeError(WireDecodeError):
    """Group wire types (3, 4) or a value outside 0-5."""

    def __init__(self, wire_type: int, offset: int = -1):
        super().__init__(f"Unsupported wire type {wire_type} at offset {offset}", offset)
        self.wire_type = wire_type


class UnknownMessageError(LookupError):
    """A schema-guided decode was asked for a message the catalog lacks."""

    def __init__(self, message_name: str):
        super().__init__(f'Message type "{message_name}" not found in proto definition')
        self.message_name = message_name
