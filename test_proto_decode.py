"""Tests for the decoder facade and the command line."""

import base64
import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from const import USER_AGENT_STRING
from proto_decode import (
    ProtoDecoder,
    fetch_data_from_url,
    load_data_from_file,
    main,
    parse_base64,
    parse_hex,
)
from proto_errors import UnknownMessageError
from proto_schema import parse_schema
from test_proto_schema import SAMPLE_PROTO
from test_schemaless_decoder import SAMPLE_BASE64

SAMPLE = base64.b64decode(SAMPLE_BASE64)


def _grpc_web_frame(flag: int, payload: bytes) -> bytes:
    return bytes([flag]) + len(payload).to_bytes(4, "big") + payload


@pytest.fixture
def proto_file(tmp_path):
    path = tmp_path / "person.proto"
    path.write_text(SAMPLE_PROTO, encoding="utf-8")
    return path


def test_decode_raw_without_schema():
    result = ProtoDecoder().decode(SAMPLE)
    assert result["format_detected"] == "raw"
    assert result["message_count"] == 1
    message = result["messages"][0]
    assert message["size_bytes"] == len(SAMPLE)
    assert message["hex_preview"] == SAMPLE.hex()
    assert message["decoder"] == "schemaless"
    assert message["decoded"]["3"] == "john@example.com"
    assert "blackbox" not in message


def test_decode_with_schema():
    decoder = ProtoDecoder(parse_schema(SAMPLE_PROTO))
    message = decoder.decode(SAMPLE, message_type="Person")["messages"][0]
    assert message["decoder"] == "schema"
    assert message["decoded"] == {"name": "John", "id": 123, "email": "john@example.com", "phone": [1]}


def test_long_message_preview_is_truncated():
    data = b"\x0a\x3c" + b"a" * 60
    preview = ProtoDecoder().decode(data)["messages"][0]["hex_preview"]
    assert preview == data[:50].hex() + "..."


def test_unknown_message_type():
    with pytest.raises(UnknownMessageError, match='Message type "Person" not found'):
        ProtoDecoder().decode(SAMPLE, message_type="Person")
    with pytest.raises(UnknownMessageError):
        ProtoDecoder(parse_schema(SAMPLE_PROTO)).decode(SAMPLE, message_type="Nope")


def test_grpc_web_frames_skip_trailers():
    data = (
        _grpc_web_frame(0x00, b"\x08\x01")
        + _grpc_web_frame(0x00, b"\x08\x02")
        + _grpc_web_frame(0x80, b"grpc-status:0\r\n")
    )
    result = ProtoDecoder().decode(data, format="grpc-web")
    assert result["message_count"] == 2
    assert [m["decoded"] for m in result["messages"]] == [{"1": 1}, {"1": 2}]


def test_grpc_web_truncated_frame_stops():
    data = _grpc_web_frame(0x00, b"\x08\x01") + b"\x00\x00\x00\x00\x09\x08"
    assert ProtoDecoder().extract_messages(data, "grpc-web") == [b"\x08\x01"]
    assert ProtoDecoder().extract_messages(b"\x00\x00", "grpc-web") == []


def test_varint_framing():
    data = b"\x02\x08\x01\x04\x12\x02hi"
    assert ProtoDecoder().extract_messages(data, "varint") == [b"\x08\x01", b"\x12\x02hi"]
    assert ProtoDecoder().extract_messages(b"\x02\x08\x01\x05\x08", "varint") == [b"\x08\x01"]


def test_unknown_framing():
    with pytest.raises(ValueError):
        ProtoDecoder().extract_messages(SAMPLE, "json")


def test_blackbox_comparison():
    message = ProtoDecoder().decode(b"\x08\x96\x01", use_blackbox=True)["messages"][0]
    assert message["decoded"] == {"1": 150}
    assert message["blackbox"]["decoded"] == {"1": 150}


def test_parse_inputs():
    assert parse_hex("08 96\n01") == b"\x08\x96\x01"
    assert parse_base64(SAMPLE_BASE64) == SAMPLE
    with pytest.raises(ValueError):
        parse_hex("zz")
    with pytest.raises(ValueError):
        parse_base64("not base64!")


def test_load_data_from_file(tmp_path):
    path = tmp_path / "message.hex"
    path.write_text("08 96 01\n")
    assert load_data_from_file(path, "hex") == b"\x08\x96\x01"
    assert load_data_from_file(path, "binary") == b"08 96 01\n"
    with pytest.raises(FileNotFoundError):
        load_data_from_file(tmp_path / "missing.bin")


@patch("proto_decode.requests.request")
def test_fetch_data_from_url(mock_request):
    mock_request.return_value = MagicMock(content=b"\x08\x01", status_code=200)
    assert fetch_data_from_url("https://example.com/api", headers={"X-Test": "1"}) == b"\x08\x01"
    kwargs = mock_request.call_args.kwargs
    assert kwargs["method"] == "GET"
    assert kwargs["headers"]["User-Agent"] == USER_AGENT_STRING
    assert kwargs["headers"]["X-Test"] == "1"


@patch("proto_decode.requests.request", side_effect=requests.ConnectionError("refused"))
def test_fetch_failure_is_runtime_error(mock_request):
    with pytest.raises(RuntimeError, match="refused"):
        fetch_data_from_url("https://example.com/api")


def test_main_decode_json(capsys):
    assert main(["decode", "--base64", SAMPLE_BASE64, "--output", "json"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["messages"][0]["decoded"] == {"1": "John", "2": 123, "3": "john@example.com", "4": 1}


def test_main_decode_with_proto(capsys, proto_file):
    argv = ["decode", "--base64", SAMPLE_BASE64, "--proto", str(proto_file), "--message-type", "Person", "--output", "json"]
    assert main(argv) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["messages"][0]["decoded"]["name"] == "John"


def test_main_decode_pretty(capsys):
    assert main(["decode", "--hex", "0896 01"]) == 0
    out = capsys.readouterr().out
    assert "PROTOBUF DECODER RESULTS" in out
    assert '"1": 150' in out


def test_main_errors(capsys, proto_file):
    assert main(["decode", "--hex", "zz"]) == 1
    assert main(["decode", "--hex", "08 01", "--message-type", "Person"]) == 1
    assert main(["decode", "--hex", "08 01", "--proto", str(proto_file), "--message-type", "Nope"]) == 1
    assert main(["decode"]) == 1
    assert main([]) == 1
    assert "Error:" in capsys.readouterr().err


@patch("proto_decode.requests.request", side_effect=requests.ConnectionError("refused"))
def test_main_url_failure(mock_request, capsys):
    assert main(["decode", "--url", "https://example.com/api"]) == 1
    assert "Failed to fetch" in capsys.readouterr().err


def test_main_messages(capsys, proto_file):
    assert main(["messages", "--proto", str(proto_file), "--output", "json"]) == 0
    listing = json.loads(capsys.readouterr().out)
    assert list(listing["messages"]) == ["Person", "Company", "Response"]
    assert listing["messages"]["Person"]["4"] == {"name": "phone", "type": "string", "repeated": True}
    assert listing["enums"]["Status"]["1"] == "ACTIVE"


def test_main_infer(capsys):
    assert main(["infer", "--base64", SAMPLE_BASE64, "--message-name", "Person"]) == 0
    out = capsys.readouterr().out
    assert out.startswith('syntax = "proto3";')
    assert "message Person {" in out
    assert "  string field_3 = 3;" in out
