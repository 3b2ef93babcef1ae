from __future__ import annotations

from datetime import datetime

import pytest

from devicelink.core.codec import (
    encode,
    format_bytes,
    hex_decode,
    is_printable_text,
    parse_hex_tokens,
    render_line,
    to_hex,
    to_text,
)
from devicelink.core.errors import ProtocolError
from devicelink.core.model import DeviceProfile, LogEntry, Severity, TransportKind, ViewMode

AT = DeviceProfile(id="at", name="AT Commands", line_ending="\r\n")
RAW = DeviceProfile(id="raw", name="Raw Data", line_ending="")


def test_to_hex_is_lowercase_pairs_separated_by_single_spaces() -> None:
    data = bytes([0x00, 0x1B, 0xFF])
    assert to_hex(data) == "00 1b ff"
    assert len(to_hex(data)) == 3 * len(data) - 1
    assert to_hex(b"") == ""


def test_to_text_escapes_control_bytes() -> None:
    assert to_text(b"OK\r\n") == "OK\\r\\n"
    assert to_text(b"a\tb") == "a\\tb"
    assert to_text(b"\x00\x7f\x1b") == "\\x00\\x7f\\x1b"


def test_encode_text_appends_profile_line_ending() -> None:
    assert encode("AT", AT, False) == b"AT\r\n"
    assert encode("AT", RAW, False) == b"AT"


def test_encode_hex_skips_line_ending() -> None:
    assert encode(hex_decode("1B40"), AT, True) == b"\x1b\x40"


def test_encode_text_is_utf8() -> None:
    assert encode("é", RAW, False) == "é".encode("utf-8")


def test_encode_raw_string_rejects_wide_characters() -> None:
    assert encode("\x1d\x56\x00", RAW, True) == b"\x1d\x56\x00"
    with pytest.raises(ProtocolError):
        encode("€", RAW, True)


def test_hex_decode_accepts_spaces_and_case() -> None:
    assert hex_decode("1b 40") == b"\x1b\x40"
    assert hex_decode("1B40") == b"\x1b\x40"


@pytest.mark.parametrize("value", ["", "abc", "zz", "1b4"])
def test_hex_decode_rejects_malformed_input(value: str) -> None:
    with pytest.raises(ProtocolError):
        hex_decode(value)


def test_parse_hex_tokens() -> None:
    assert parse_hex_tokens("01 2 ff") == [1, 2, 255]


def test_parse_hex_tokens_rejects_whole_input_on_bad_token() -> None:
    with pytest.raises(ProtocolError) as exc_info:
        parse_hex_tokens("01 02 ZZ")
    assert "ZZ" in str(exc_info.value)
    assert "Use: 01 02 03 04" in str(exc_info.value)


def test_parse_hex_tokens_rejects_empty_input() -> None:
    with pytest.raises(ProtocolError, match="No data to send"):
        parse_hex_tokens("   ")


def test_is_printable_text() -> None:
    assert is_printable_text(b"hello\n")
    assert not is_printable_text(b"\x00\x01")
    assert not is_printable_text(b"\xff")
    assert not is_printable_text(b"")


def test_format_bytes_view_modes() -> None:
    assert format_bytes("RX:", b"OK\r\n", ViewMode.TEXT) == "RX: OK\\r\\n"
    assert format_bytes("RX:", b"OK", ViewMode.HEX) == "RX: 4f 4b"
    both = format_bytes("RX:", b"OK", ViewMode.BOTH)
    assert both == "RX:\n    HEX: 4f 4b\n    TXT: OK"


def test_render_line_prefixes_timestamp() -> None:
    entry = LogEntry(
        timestamp=datetime(2024, 1, 2, 13, 4, 5),
        kind=TransportKind.SERIAL,
        severity=Severity.RX,
        message="RX:",
        raw_bytes=b"\x01",
    )
    assert render_line(entry, ViewMode.HEX) == "[13:04:05] RX: 01"

    plain = LogEntry(
        timestamp=datetime(2024, 1, 2, 9, 0, 0),
        kind=TransportKind.SERIAL,
        severity=Severity.INFO,
        message="Connected",
    )
    assert render_line(plain, ViewMode.HEX) == "[09:00:00] Connected"
