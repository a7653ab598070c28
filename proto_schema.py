"""
Minimal .proto schema parser.

Reads the subset of the proto language needed to label decoded fields:
top-level messages (field number, type, name, repeated) and enums
(value -> symbol). Imports, options, services, oneof and map fields are
ignored.

Scope tracking is flat: one current message, one current enum and a single
brace depth counter. A block nested inside a message is tolerated, but its
closing brace also ends the enclosing message.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

_LOGGER = logging.getLogger(__name__)

_ENUM_HEADER = re.compile(r"^enum\s+(\w+)\s*\{")
_MESSAGE_HEADER = re.compile(r"^message\s+(\w+)\s*\{")
_ENUM_VALUE = re.compile(r"^(\w+)\s*=\s*(-?\d+)\s*;")
_FIELD = re.compile(r"^(repeated\s+)?([\w.]+)\s+(\w+)\s*=\s*(\d+)\s*;")
_TRAILING_COMMENT = re.compile(r"//.*$")
_STATEMENT_BREAK = re.compile(r"([{;])|(\})")

SCALAR_TYPES = {
    "double", "float",
    "int32", "int64", "uint32", "uint64", "sint32", "sint64",
    "fixed32", "fixed64", "sfixed32", "sfixed64",
    "bool", "string", "bytes",
}


@dataclass(frozen=True)
class FieldSpec:
    """Schema metadata for one field number."""
    name: str
    type: str
    repeated: bool = False


@dataclass
class ProtoCatalog:
    """Messages and enums extracted from a schema text."""
    messages: Dict[str, Dict[int, FieldSpec]] = field(default_factory=dict)
    enums: Dict[str, Dict[int, str]] = field(default_factory=dict)

    def message_names(self) -> List[str]:
        """Message types in declaration order."""
        return list(self.messages)

    def resolve_type(self, type_name: str) -> str:
        """Map a possibly package-qualified type onto a catalog name.

        "pkg.Status" resolves to "Status" when only the bare name is known.
        Unknown names are returned unchanged.
        """
        if type_name in self.messages or type_name in self.enums:
            return type_name
        short = type_name.rsplit(".", 1)[-1]
        if short in self.messages or short in self.enums:
            return short
        return type_name

    def is_message(self, type_name: str) -> bool:
        return self.resolve_type(type_name) in self.messages

    def is_enum(self, type_name: str) -> bool:
        return self.resolve_type(type_name) in self.enums

    def unresolved_types(self) -> Dict[str, List[str]]:
        """Field types that are neither scalars nor catalog entries, per message.

        Such fields still decode, through the wire-type heuristics.
        """
        unresolved: Dict[str, List[str]] = {}
        for message_name, fields in self.messages.items():
            for spec in fields.values():
                if spec.type in SCALAR_TYPES or self.is_message(spec.type) or self.is_enum(spec.type):
                    continue
                unresolved.setdefault(message_name, []).append(spec.type)
        return unresolved


def _logical_lines(text: str) -> Iterator[str]:
    """Yield one statement per item: header, declaration or closing brace."""
    for raw_line in text.splitlines():
        line = _TRAILING_COMMENT.sub("", raw_line)
        split = _STATEMENT_BREAK.sub(lambda m: f"{m.group(1)}\n" if m.group(1) else "\n}\n", line)
        for statement in split.split("\n"):
            statement = statement.strip()
            if statement:
                yield statement


def parse_schema(text: str) -> ProtoCatalog:
    """Parse schema text into a ProtoCatalog. Never raises on bad input."""
    catalog = ProtoCatalog()
    current_message: Optional[str] = None
    current_enum: Optional[str] = None
    depth = 0

    for line in _logical_lines(text):
        match = _ENUM_HEADER.match(line)
        if match:
            current_enum = match.group(1)
            catalog.enums[current_enum] = {}
            depth = 1
            continue

        match = _MESSAGE_HEADER.match(line)
        if match:
            current_message = match.group(1)
            catalog.messages[current_message] = {}
            depth = 1
            continue

        depth += line.count("{") - line.count("}")

        if current_enum and depth > 0:
            match = _ENUM_VALUE.match(line)
            if match:
                symbol, value = match.groups()
                catalog.enums[current_enum][int(value)] = symbol

        if current_message and depth > 0:
            match = _FIELD.match(line)
            if match:
                repeated, type_name, name, number = match.groups()
                catalog.messages[current_message][int(number)] = FieldSpec(
                    name=name,
                    type=type_name,
                    repeated=bool(repeated),
                )

        if depth == 0:
            current_message = None
            current_enum = None

    _LOGGER.debug(f"Parsed schema: {len(catalog.messages)} messages, {len(catalog.enums)} enums")
    return catalog


def parse_schema_file(path: Union[str, Path]) -> ProtoCatalog:
    """Read a .proto file as UTF-8 and parse it."""
    return parse_schema(Path(path).read_text(encoding="utf-8"))
