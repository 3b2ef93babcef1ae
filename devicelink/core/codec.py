"""Byte formatting and payload encoding shared by every transport."""

from __future__ import annotations

import re

from devicelink.core.errors import ProtocolError
from devicelink.core.model import DeviceProfile, LogEntry, ViewMode

_HEX_RE = re.compile(r"^[0-9a-f]*$")
_TOKEN_RE = re.compile(r"^[0-9a-fA-F]{1,2}$")
_ESCAPES = {10: "\\n", 13: "\\r", 9: "\\t"}
TIMESTAMP_FORMAT = "%H:%M:%S"


def to_hex(data: bytes) -> str:
    return " ".join(f"{b:02x}" for b in data)


def to_text(data: bytes) -> str:
    parts: list[str] = []
    for b in data:
        if 32 <= b <= 126:
            parts.append(chr(b))
        elif b in _ESCAPES:
            parts.append(_ESCAPES[b])
        else:
            parts.append(f"\\x{b:02x}")
    return "".join(parts)


def hex_decode(text: str) -> bytes:
    """Decode ``"1B40"`` or ``"1b 40"`` into raw bytes."""
    normalized = "".join(text.split()).lower()
    if not normalized:
        raise ProtocolError("Hex payload must not be empty")
    if len(normalized) % 2 != 0:
        raise ProtocolError(f"Hex payload '{text}' must have an even number of digits")
    if not _HEX_RE.match(normalized):
        raise ProtocolError(f"Hex payload '{text}' must contain only [0-9a-f]")
    return bytes.fromhex(normalized)


def parse_hex_tokens(text: str) -> list[int]:
    """Parse whitespace separated byte tokens such as ``"01 02 ff"``.

    The whole input is rejected if any token is not a 0-255 hex byte.
    """
    tokens = text.split()
    if not tokens:
        raise ProtocolError("No data to send")
    bad = [token for token in tokens if not _TOKEN_RE.match(token)]
    if bad:
        raise ProtocolError(
            f"Invalid hex format ({', '.join(bad)}). Use: 01 02 03 04"
        )
    return [int(token, 16) for token in tokens]


def encode(payload: str | bytes, profile: DeviceProfile, is_hex: bool) -> bytes:
    """Turn a caller payload into the bytes to put on the wire.

    Plain text gets the profile line ending and is UTF-8 encoded. Hex payloads
    are already decoded and go out verbatim.
    """
    if is_hex:
        if isinstance(payload, (bytes, bytearray)):
            return bytes(payload)
        try:
            return payload.encode("latin-1")
        except UnicodeEncodeError as exc:
            raise ProtocolError(
                f"Raw payload contains a character outside 0-255: {exc.object[exc.start]!r}"
            ) from exc
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload) + profile.line_ending.encode("utf-8")
    return (payload + profile.line_ending).encode("utf-8")


def is_printable_text(data: bytes) -> bool:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return bool(text) and all(ch.isspace() or 0x20 <= ord(ch) <= 0x7E for ch in text)


def format_bytes(message: str, data: bytes, view_mode: ViewMode) -> str:
    if view_mode is ViewMode.HEX:
        return f"{message} {to_hex(data)}"
    if view_mode is ViewMode.TEXT:
        return f"{message} {to_text(data)}"
    return f"{message}\n    HEX: {to_hex(data)}\n    TXT: {to_text(data)}"


def render_line(entry: LogEntry, view_mode: ViewMode) -> str:
    stamp = entry.timestamp.strftime(TIMESTAMP_FORMAT)
    if entry.raw_bytes is not None:
        return f"[{stamp}] {format_bytes(entry.message, entry.raw_bytes, view_mode)}"
    return f"[{stamp}] {entry.message}"
