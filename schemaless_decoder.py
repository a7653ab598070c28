"""
Schema-less protobuf decoder.

Decodes arbitrary wire data using only the wire types, keyed by field number.
Length-delimited payloads are guessed as text, nested message or raw bytes,
in that order.
"""

import logging
import re
from typing import Any, Dict, Optional

from const import MAX_NESTING_DEPTH
from proto_errors import WireDecodeError
from wire_reader import WireField, WireType, format_bytes, format_fixed, read_field

_LOGGER = logging.getLogger(__name__)

# Printable ASCII plus the whitespace characters \s matches in ASCII mode
_PRINTABLE_TEXT = re.compile(r"[\x20-\x7e\t\n\x0b\x0c\r]+")


def _printable_text(payload: bytes) -> Optional[str]:
    """Return payload as text if it is non-empty, valid UTF-8 and printable."""
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        return None
    if _PRINTABLE_TEXT.fullmatch(text):
        return text
    return None


def classify_payload(payload: bytes, depth: int = 0, max_depth: int = MAX_NESTING_DEPTH) -> Any:
    """Guess what a length-delimited payload holds.

    Tries printable text first, then a strict nested decode (any wire fault
    inside the payload rejects the guess), then falls back to a byte span.
    """
    text = _printable_text(payload)
    if text is not None:
        return text

    if depth < max_depth:
        try:
            return _decode_fields(payload, depth + 1, max_depth, strict=True)
        except WireDecodeError as err:
            _LOGGER.debug(f"Payload of {len(payload)} bytes is not a nested message: {err}")

    return format_bytes(payload)


def interpret_field(field: WireField, depth: int = 0, max_depth: int = MAX_NESTING_DEPTH) -> Any:
    """Turn a raw wire field into its schema-less display value."""
    if field.wire_type == WireType.VARINT:
        return field.value
    if field.wire_type in (WireType.FIXED64, WireType.FIXED32):
        return format_fixed(field.value)
    return classify_payload(field.value, depth, max_depth)


def merge_occurrence(result: Dict[str, Any], key: str, value: Any) -> None:
    """Promote-on-second-occurrence merge.

    The first occurrence is stored bare; a second one turns the entry into a
    list, later ones are appended.
    """
    if key not in result:
        result[key] = value
    elif isinstance(result[key], list):
        result[key].append(value)
    else:
        result[key] = [result[key], value]


def _decode_fields(buffer: bytes, depth: int, max_depth: int, strict: bool) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    offset = 0
    while offset < len(buffer):
        try:
            field = read_field(buffer, offset)
        except WireDecodeError as err:
            if strict:
                raise
            _LOGGER.debug(f"Stopped decoding at offset {offset} of {len(buffer)}: {err}")
            break
        merge_occurrence(result, str(field.field_number), interpret_field(field, depth, max_depth))
        offset = field.offset
    return result


def decode_without_schema(buffer: bytes, max_depth: int = MAX_NESTING_DEPTH) -> Dict[str, Any]:
    """Decode a protobuf message without a schema.

    Best effort: the first wire fault ends the decode and the fields read
    before it are returned.

    Args:
        buffer: Raw protobuf bytes
        max_depth: How many nested levels the nested-message guess may enter

    Returns:
        Mapping of field number (as str) to value or list of values
    """
    return _decode_fields(bytes(buffer), 0, max_depth, strict=False)
