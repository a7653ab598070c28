"""
Infer a pseudo .proto skeleton from a schema-less decode.

The generated text stays inside the subset proto_schema.parse_schema reads:
every message is a top-level block, nested messages become sibling blocks
named <Parent>Field<N>.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Tuple

_LOGGER = logging.getLogger(__name__)

_FIXED64_HEX = re.compile(r"0x[0-9a-f]{16}")
_FIXED32_HEX = re.compile(r"0x[0-9a-f]{8}")
_BYTE_SPAN = re.compile(r"\[bytes: [0-9a-f ]*\]")

PROTO_RESERVED_WORDS = {
    "package",
    "syntax",
    "import",
    "option",
    "message",
    "enum",
    "repeated",
    "optional",
    "required",
    "map",
    "reserved",
    "returns",
    "rpc",
}


def _sanitize_identifier(name: str, prefix: str) -> str:
    candidate = re.sub(r"\W+", "_", name or "")
    if not candidate:
        candidate = prefix
    if candidate[0].isdigit():
        candidate = f"{prefix}_{candidate}"
    if candidate.lower() in PROTO_RESERVED_WORDS:
        candidate = f"{candidate}_{prefix}"
    return candidate


def _merge_samples(values: List[Any]) -> Any:
    """Pick the value that decides a repeated field's type.

    Lists of nested messages are merged key by key so every field seen in any
    occurrence ends up in the generated message.
    """
    first = values[0]
    if not isinstance(first, dict):
        return first
    merged: Dict[str, Any] = {}
    for value in values:
        if not isinstance(value, dict):
            continue
        for key, item in value.items():
            if key not in merged:
                merged[key] = item
            elif isinstance(merged[key], dict) and isinstance(item, dict):
                merged[key] = _merge_samples([merged[key], item])
    return merged


def _scalar_type(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "uint64"
    if isinstance(value, float):
        return "double"
    if _FIXED64_HEX.fullmatch(value):
        return "fixed64"
    if _FIXED32_HEX.fullmatch(value):
        return "fixed32"
    if _BYTE_SPAN.fullmatch(value):
        return "bytes"
    return "string"


def _field_items(decoded: Dict[str, Any]) -> List[Tuple[int, Any]]:
    items = []
    for key, value in decoded.items():
        if not str(key).isdigit():
            _LOGGER.debug(f"Skipping non-numeric field key {key!r}")
            continue
        items.append((int(key), value))
    return sorted(items, key=lambda item: item[0])


def _message_blocks(decoded: Dict[str, Any], message_name: str, blocks: List[str]) -> None:
    lines = [f"message {message_name} {{"]
    nested: List[Tuple[str, Dict[str, Any]]] = []

    for field_number, value in _field_items(decoded):
        repeated = isinstance(value, list)
        sample = _merge_samples(value) if repeated else value

        if isinstance(sample, dict):
            field_type = f"{message_name}Field{field_number}"
            nested.append((field_type, sample))
        else:
            field_type = _scalar_type(sample)

        field_name = _sanitize_identifier(f"field_{field_number}", "field")
        label = "repeated " if repeated else ""
        lines.append(f"  {label}{field_type} {field_name} = {field_number};")

    lines.append("}")
    blocks.append("\n".join(lines))

    for nested_name, nested_decoded in nested:
        _message_blocks(nested_decoded, nested_name, blocks)


def decoded_to_pseudo_proto(decoded: Dict[str, Any], root_name: str = "ObservedMessage") -> str:
    """Render a schema-less DecodedMessage as proto3 schema text."""
    blocks: List[str] = []
    _message_blocks(decoded, _sanitize_identifier(root_name, "Message"), blocks)
    return "\n\n".join(['syntax = "proto3";', *blocks]) + "\n"
