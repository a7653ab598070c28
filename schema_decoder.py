"""
Schema-guided protobuf decoder.

Labels wire fields with the names, scalar types and enum symbols of a
ProtoCatalog message, recursing into nested message types. Field numbers the
schema does not declare are decoded with the schema-less heuristics and keyed
as unknown_field_<N>.
"""

import logging
from typing import Any, Dict

from const import INT64_MAX, MAX_NESTING_DEPTH, UNKNOWN_ENUM_LABEL, UNKNOWN_FIELD_PREFIX
from proto_errors import UnknownMessageError, WireDecodeError
from proto_schema import FieldSpec, ProtoCatalog
from schemaless_decoder import classify_payload, interpret_field, merge_occurrence
from wire_reader import WireField, WireType, format_bytes, format_fixed, read_field, unpack_double, unpack_float

_LOGGER = logging.getLogger(__name__)


def _signed64(value: int) -> int:
    """Reinterpret an unsigned 64-bit varint payload as two's complement."""
    if value > INT64_MAX:
        return value - (1 << 64)
    return value


def _interpret_varint(spec: FieldSpec, value: int, catalog: ProtoCatalog) -> Any:
    if spec.type == "bool":
        return value != 0
    if catalog.is_enum(spec.type):
        # Negative enum values are sign-extended to 64 bits on the wire
        number = _signed64(value)
        symbol = catalog.enums[catalog.resolve_type(spec.type)].get(number)
        return f"{symbol if symbol is not None else UNKNOWN_ENUM_LABEL} ({number})"
    if spec.type in ("int32", "int64"):
        return _signed64(value)
    # uint32/uint64 are already unsigned; sint32/sint64 stay zigzag-encoded
    return value


def _interpret_known(
    field: WireField,
    spec: FieldSpec,
    catalog: ProtoCatalog,
    depth: int,
    max_depth: int,
) -> Any:
    if field.wire_type == WireType.VARINT:
        return _interpret_varint(spec, field.value, catalog)

    if field.wire_type == WireType.FIXED64:
        return unpack_double(field.value) if spec.type == "double" else format_fixed(field.value)

    if field.wire_type == WireType.FIXED32:
        return unpack_float(field.value) if spec.type == "float" else format_fixed(field.value)

    payload = field.value
    if spec.type == "string":
        return payload.decode("utf-8", errors="replace")
    if spec.type == "bytes":
        return format_bytes(payload)
    if catalog.is_message(spec.type):
        if depth >= max_depth:
            _LOGGER.debug(f"Nesting limit {max_depth} reached at {spec.type}, keeping raw bytes")
            return format_bytes(payload)
        return _decode_message(payload, catalog, catalog.resolve_type(spec.type), depth + 1, max_depth)
    return classify_payload(payload, depth, max_depth)


def _append_repeated(result: Dict[str, Any], key: str, value: Any) -> None:
    """Declared-repeated merge: always a list, even for one occurrence."""
    existing = result.setdefault(key, [])
    if not isinstance(existing, list):
        existing = result[key] = [existing]
    existing.append(value)


def _decode_message(
    buffer: bytes,
    catalog: ProtoCatalog,
    message_name: str,
    depth: int,
    max_depth: int,
) -> Dict[str, Any]:
    fields = catalog.messages[message_name]
    result: Dict[str, Any] = {}
    offset = 0
    while offset < len(buffer):
        try:
            field = read_field(buffer, offset)
        except WireDecodeError as err:
            _LOGGER.debug(f"Stopped decoding {message_name} at offset {offset} of {len(buffer)}: {err}")
            break

        spec = fields.get(field.field_number)
        if spec is None:
            key = f"{UNKNOWN_FIELD_PREFIX}{field.field_number}"
            merge_occurrence(result, key, interpret_field(field, depth, max_depth))
        elif spec.repeated:
            _append_repeated(result, spec.name, _interpret_known(field, spec, catalog, depth, max_depth))
        else:
            merge_occurrence(result, spec.name, _interpret_known(field, spec, catalog, depth, max_depth))

        offset = field.offset
    return result


def decode_with_schema(
    buffer: bytes,
    catalog: ProtoCatalog,
    message_name: str,
    max_depth: int = MAX_NESTING_DEPTH,
) -> Dict[str, Any]:
    """Decode a protobuf message as catalog.messages[message_name].

    Raises:
        UnknownMessageError: message_name is not declared in the catalog.
            Checked before any byte is read.
    """
    if message_name not in catalog.messages:
        raise UnknownMessageError(message_name)
    return _decode_message(bytes(buffer), catalog, message_name, 0, max_depth)
