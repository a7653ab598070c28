#!/usr/bin/env python3
"""
General-purpose Protobuf Decoder CLI

Decode protobuf messages with or without a .proto definition, with support for:
- Raw binary files
- Hex strings
- Base64 encoded data
- HTTP endpoints
- gRPC-web and varint length-prefixed streams
- A minimal .proto parser for field names, types and enum symbols
- Side-by-side comparison with blackboxprotobuf
"""

import argparse
import base64
import binascii
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import blackboxprotobuf as bbp
import requests

from const import (
    API_TIMEOUT_SECONDS,
    GRPC_WEB_DATA_FRAME,
    GRPC_WEB_HEADER_SIZE,
    GRPC_WEB_TRAILER_FRAME,
    HEX_PREVIEW_BYTES,
    LOG_LEVEL,
    MAX_NESTING_DEPTH,
    USER_AGENT_STRING,
)
from proto_errors import UnknownMessageError, WireDecodeError
from proto_schema import ProtoCatalog, parse_schema_file
from reverse_engineering import decoded_to_pseudo_proto
from schema_decoder import decode_with_schema
from schemaless_decoder import decode_without_schema
from wire_reader import read_varint

_LOGGER = logging.getLogger(__name__)

FRAME_FORMATS = ("raw", "grpc-web", "varint")


class ProtoDecoder:
    """Protobuf decoder with an optional schema catalog."""

    def __init__(self, catalog: Optional[ProtoCatalog] = None, max_depth: int = MAX_NESTING_DEPTH):
        """Initialize decoder.

        Args:
            catalog: Parsed .proto definitions, or None for schema-less decoding only
            max_depth: Nesting limit for nested messages
        """
        self.catalog = catalog
        self.max_depth = max_depth

    @classmethod
    def from_proto_file(cls, proto_path: Path, max_depth: int = MAX_NESTING_DEPTH) -> "ProtoDecoder":
        catalog = parse_schema_file(proto_path)
        _LOGGER.info(f"Loaded {proto_path}: messages={catalog.message_names()}, enums={list(catalog.enums)}")
        for message_name, types in catalog.unresolved_types().items():
            _LOGGER.warning(f"{message_name}: unresolved field types {sorted(set(types))}, using heuristics")
        return cls(catalog, max_depth=max_depth)

    def extract_messages(self, data: bytes, format: str = "raw") -> List[bytes]:
        """Split raw data into protobuf messages.

        Supports:
        - raw: the whole buffer is one message
        - grpc-web: 1-byte flag + 4-byte big-endian length frames
        - varint: varint length-prefixed messages
        """
        if format == "raw":
            return [data]

        messages = []
        pos = 0

        if format == "grpc-web":
            while pos < len(data):
                if pos + GRPC_WEB_HEADER_SIZE > len(data):
                    _LOGGER.warning(f"Trailing {len(data) - pos} bytes are not a complete gRPC-web header")
                    break
                frame_type = data[pos]
                frame_len = int.from_bytes(data[pos + 1:pos + GRPC_WEB_HEADER_SIZE], "big")
                start = pos + GRPC_WEB_HEADER_SIZE
                end = start + frame_len
                if end > len(data):
                    _LOGGER.warning(f"gRPC-web frame at {pos} declares {frame_len} bytes, {len(data) - start} available")
                    break
                if frame_type == GRPC_WEB_DATA_FRAME:
                    messages.append(data[start:end])
                elif frame_type == GRPC_WEB_TRAILER_FRAME:
                    _LOGGER.debug(f"Skipping trailer frame: {data[start:end]!r}")
                else:
                    _LOGGER.warning(f"Skipping gRPC-web frame with unsupported flag 0x{frame_type:02x}")
                pos = end

        elif format == "varint":
            while pos < len(data):
                try:
                    length, start = read_varint(data, pos)
                except WireDecodeError as err:
                    _LOGGER.warning(f"Bad length prefix at {pos}: {err}")
                    break
                if start + length > len(data):
                    _LOGGER.warning(f"Message at {pos} declares {length} bytes, {len(data) - start} available")
                    break
                messages.append(data[start:start + length])
                pos = start + length

        else:
            raise ValueError(f"Unknown format: {format}")

        return messages

    def decode_message(self, message: bytes, message_type: Optional[str] = None) -> Dict[str, Any]:
        """Decode one message, schema-guided when message_type is given."""
        if message_type:
            return decode_with_schema(message, self.catalog, message_type, max_depth=self.max_depth)
        return decode_without_schema(message, max_depth=self.max_depth)

    def decode_with_blackbox(self, message: bytes) -> Dict[str, Any]:
        """Decode message using blackboxprotobuf (no proto definition needed)."""
        try:
            decoded, typedef = bbp.protobuf_to_json(message)
            return {
                "decoded": json.loads(decoded) if isinstance(decoded, str) else decoded,
                "typedef": typedef,
            }
        except Exception as e:
            _LOGGER.debug(f"Blackbox decode failed: {e}")
            return {"error": str(e)}

    def decode(
        self,
        data: bytes,
        message_type: Optional[str] = None,
        format: str = "raw",
        use_blackbox: bool = False,
    ) -> Dict[str, Any]:
        """Decode protobuf data.

        Args:
            data: Raw protobuf bytes
            message_type: Optional message name from the loaded .proto
            format: Framing of data ("raw", "grpc-web", "varint")
            use_blackbox: Also decode with blackboxprotobuf for comparison

        Returns:
            Dictionary with one entry per extracted message

        Raises:
            UnknownMessageError: message_type is not in the loaded schema
        """
        if message_type and (self.catalog is None or message_type not in self.catalog.messages):
            raise UnknownMessageError(message_type)

        messages = self.extract_messages(data, format)
        result = {
            "format_detected": format,
            "message_count": len(messages),
            "messages": [],
        }

        for i, message in enumerate(messages):
            msg_result = {
                "message_index": i,
                "size_bytes": len(message),
                "hex_preview": message[:HEX_PREVIEW_BYTES].hex() + ("..." if len(message) > HEX_PREVIEW_BYTES else ""),
                "decoder": "schema" if message_type else "schemaless",
                "decoded": self.decode_message(message, message_type),
            }
            if use_blackbox:
                msg_result["blackbox"] = self.decode_with_blackbox(message)
            result["messages"].append(msg_result)

        return result


def _strip_whitespace(text: str) -> str:
    return "".join(text.split())


def parse_hex(text: str) -> bytes:
    try:
        return bytes.fromhex(_strip_whitespace(text))
    except ValueError as e:
        raise ValueError(f"Invalid hex string: {e}") from e


def parse_base64(text: str) -> bytes:
    try:
        return base64.b64decode(_strip_whitespace(text), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 string: {e}") from e


def load_data_from_file(file_path: Path, encoding: str = "binary") -> bytes:
    """Load data from file.

    Args:
        file_path: Path to file
        encoding: "binary", "hex", or "base64"
    """
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    if encoding == "binary":
        return file_path.read_bytes()
    elif encoding == "hex":
        return parse_hex(file_path.read_text())
    elif encoding == "base64":
        return parse_base64(file_path.read_text())
    else:
        raise ValueError(f"Unknown encoding: {encoding}")


def fetch_data_from_url(
    url: str,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    data: Optional[bytes] = None,
    timeout: int = API_TIMEOUT_SECONDS,
) -> bytes:
    """Fetch protobuf data from a URL.

    Returns:
        Response data as bytes
    """
    request_headers = {"User-Agent": USER_AGENT_STRING, "Accept": "application/x-protobuf"}
    if headers:
        request_headers.update(headers)

    _LOGGER.info(f"{method} {url}")
    try:
        response = requests.request(
            method=method,
            url=url,
            headers=request_headers,
            data=data,
            timeout=timeout,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        raise RuntimeError(f"Failed to fetch from URL {url}: {e}") from e

    _LOGGER.debug(f"Received {len(response.content)} bytes, status {response.status_code}")
    return response.content


def _load_input(args: argparse.Namespace) -> bytes:
    if getattr(args, "url", None):
        headers = None
        if args.headers:
            try:
                headers = json.loads(args.headers)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in --headers: {e}") from e
        post_data = parse_hex(args.post_data) if args.post_data else None
        return fetch_data_from_url(args.url, method=args.method, headers=headers, data=post_data, timeout=args.timeout)
    if args.hex:
        return parse_hex(args.hex)
    if args.base64:
        return parse_base64(args.base64)
    if args.file:
        return load_data_from_file(args.file, args.encoding)
    raise ValueError("Must provide file, --hex, --base64 or --url")


def _add_input_arguments(parser: argparse.ArgumentParser, with_url: bool = True) -> None:
    parser.add_argument(
        "file",
        nargs="?",
        type=Path,
        help="File containing protobuf data (binary, hex, or base64)"
    )
    parser.add_argument("--hex", type=str, help="Hex string to decode (instead of file)")
    parser.add_argument("--base64", type=str, help="Base64 string to decode (instead of file)")
    parser.add_argument(
        "--encoding",
        choices=["binary", "hex", "base64"],
        default="binary",
        help="File encoding if reading from file (default: binary)"
    )
    parser.add_argument(
        "--format",
        choices=FRAME_FORMATS,
        default="raw",
        help="Framing of the data (default: raw)"
    )
    if not with_url:
        return
    parser.add_argument("--url", type=str, help="URL to fetch protobuf data from (instead of file)")
    parser.add_argument(
        "--method",
        choices=["GET", "POST", "PUT"],
        default="GET",
        help="HTTP method for URL request (default: GET)"
    )
    parser.add_argument(
        "--headers",
        type=str,
        help="HTTP headers as JSON string (e.g., '{\"Authorization\": \"Bearer token\"}')"
    )
    parser.add_argument("--post-data", type=str, help="Request body as a hex string")
    parser.add_argument(
        "--timeout",
        type=int,
        default=API_TIMEOUT_SECONDS,
        help=f"Request timeout in seconds (default: {API_TIMEOUT_SECONDS})"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="General-purpose Protobuf Decoder - decode protobuf messages with or without a .proto",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Decode base64 without a schema (field numbers as keys)
  python proto_decode.py decode --base64 "CgRKb2huEHsaEGpvaG5AZXhhbXBsZS5jb20gAQ=="

  # Decode with a .proto definition
  python proto_decode.py decode --base64 "CgRKb2huEHsaEGpvaG5AZXhhbXBsZS5jb20gAQ==" \\
    --proto person.proto --message-type Person

  # Decode a gRPC-web response body fetched over HTTP
  python proto_decode.py decode --url https://api.example.com/observe --format grpc-web

  # List message types and enums of a .proto
  python proto_decode.py messages --proto person.proto

  # Infer a .proto skeleton from a captured message
  python proto_decode.py infer capture.bin --message-name Capture
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    decode_parser = subparsers.add_parser("decode", help="Decode protobuf message")
    _add_input_arguments(decode_parser)
    decode_parser.add_argument("--proto", type=Path, help="Path to a .proto file")
    decode_parser.add_argument(
        "--message-type",
        type=str,
        help="Message type from --proto to decode as (e.g., 'Person')"
    )
    decode_parser.add_argument(
        "--blackbox",
        action="store_true",
        help="Also decode with blackboxprotobuf for comparison"
    )
    decode_parser.add_argument(
        "--max-depth",
        type=int,
        default=MAX_NESTING_DEPTH,
        help=f"Nesting limit for nested messages (default: {MAX_NESTING_DEPTH})"
    )
    decode_parser.add_argument(
        "--output",
        choices=["json", "pretty"],
        default="pretty",
        help="Output format (default: pretty)"
    )

    messages_parser = subparsers.add_parser("messages", help="List message types and enums in a .proto")
    messages_parser.add_argument("--proto", type=Path, required=True, help="Path to a .proto file")
    messages_parser.add_argument(
        "--output",
        choices=["json", "pretty"],
        default="pretty",
        help="Output format (default: pretty)"
    )

    infer_parser = subparsers.add_parser("infer", help="Infer a .proto skeleton from a message")
    _add_input_arguments(infer_parser, with_url=False)
    infer_parser.add_argument(
        "--message-name",
        default="ObservedMessage",
        help="Root message name to use in the generated proto"
    )

    return parser


def _print_pretty(result: Dict[str, Any]):
    """Print decoded result in a pretty format."""
    print("=" * 80)
    print("PROTOBUF DECODER RESULTS")
    print("=" * 80)
    print()

    print(f"Format: {result.get('format_detected', 'unknown')}")
    print(f"Messages found: {result.get('message_count', 0)}")
    print()

    for msg in result.get("messages", []):
        print(f"Message {msg.get('message_index', 0)}:")
        print(f"  Size: {msg.get('size_bytes', 0)} bytes")
        print(f"  Hex preview: {msg.get('hex_preview', 'N/A')}")
        print(f"  Decoder: {msg.get('decoder', 'unknown')}")
        print("  Decoded data:")
        print(json.dumps(msg.get("decoded"), indent=4, ensure_ascii=False))

        if "blackbox" in msg:
            print("  blackboxprotobuf:")
            print(json.dumps(msg["blackbox"], indent=4, ensure_ascii=False, default=str))

        print()


def _print_catalog(catalog: ProtoCatalog, output: str):
    listing = {
        "messages": {
            name: {str(number): asdict(spec) for number, spec in sorted(fields.items())}
            for name, fields in catalog.messages.items()
        },
        "enums": {
            name: {str(value): symbol for value, symbol in sorted(values.items())}
            for name, values in catalog.enums.items()
        },
    }
    if output == "json":
        print(json.dumps(listing, indent=2))
        return

    print(f"Message types ({len(catalog.messages)}):")
    for name, fields in catalog.messages.items():
        print(f"  {name} ({len(fields)} fields)")
        for number, spec in sorted(fields.items()):
            label = "repeated " if spec.repeated else ""
            print(f"    {number}: {label}{spec.type} {spec.name}")
    print(f"Enums ({len(catalog.enums)}):")
    for name, values in catalog.enums.items():
        symbols = ", ".join(f"{symbol}={value}" for value, symbol in sorted(values.items()))
        print(f"  {name}: {symbols}")


def _run_decode(args: argparse.Namespace) -> int:
    if args.message_type and not args.proto:
        print("Error: --message-type requires --proto", file=sys.stderr)
        return 1

    data = _load_input(args)
    _LOGGER.info(f"Loaded {len(data)} bytes")

    if args.proto:
        decoder = ProtoDecoder.from_proto_file(args.proto, max_depth=args.max_depth)
    else:
        decoder = ProtoDecoder(max_depth=args.max_depth)

    result = decoder.decode(
        data,
        message_type=args.message_type,
        format=args.format,
        use_blackbox=args.blackbox,
    )

    if args.output == "json":
        print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    else:
        _print_pretty(result)
    return 0


def _run_infer(args: argparse.Namespace) -> int:
    data = _load_input(args)
    decoder = ProtoDecoder()
    messages = decoder.extract_messages(data, args.format)
    if not messages:
        print("Error: No messages found in input", file=sys.stderr)
        return 1
    if len(messages) > 1:
        _LOGGER.info(f"Inferring from the first of {len(messages)} messages")
    print(decoded_to_pseudo_proto(decoder.decode_message(messages[0]), args.message_name), end="")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == "decode":
            return _run_decode(args)
        if args.command == "messages":
            _print_catalog(parse_schema_file(args.proto), args.output)
            return 0
        if args.command == "infer":
            return _run_infer(args)
    except (ValueError, OSError, RuntimeError, UnknownMessageError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
