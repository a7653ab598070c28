"""Shared constants and environment-driven settings."""

import os

from dotenv import load_dotenv

load_dotenv()

# Wire format
MAX_VARINT_SHIFT = 64
UINT64_MASK = (1 << 64) - 1
INT64_MAX = (1 << 63) - 1

UNKNOWN_ENUM_LABEL = "UNKNOWN_ENUM_VALUE"
UNKNOWN_FIELD_PREFIX = "unknown_field_"

# Recursion guard for nested messages (heuristic and schema-guided)
MAX_NESTING_DEPTH = int(os.environ.get("PROTO_DECODE_MAX_DEPTH", "32"))

# CLI / transport
API_TIMEOUT_SECONDS = int(os.environ.get("PROTO_DECODE_TIMEOUT", "30"))
USER_AGENT_STRING = os.environ.get("PROTO_DECODE_USER_AGENT", "proto-decode/0.1")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING").upper()
HEX_PREVIEW_BYTES = 50

GRPC_WEB_DATA_FRAME = 0x00
GRPC_WEB_TRAILER_FRAME = 0x80
GRPC_WEB_HEADER_SIZE = 5
