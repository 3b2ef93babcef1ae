"""Core data models shared by drivers, the state machine, the service and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TransportKind(str, Enum):
    SERIAL = "serial"
    HID = "hid"
    BLUETOOTH = "bluetooth"


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    READING = "reading"
    ERROR = "error"


class ViewMode(str, Enum):
    TEXT = "text"
    HEX = "hex"
    BOTH = "both"


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    RX = "rx"
    TX = "tx"


class ReportIdPolicy(str, Enum):
    """How the first byte of an HID hex sequence is treated."""

    LEADING_BYTE = "leading-byte"
    NONE = "none"


@dataclass(frozen=True)
class QuickCommand:
    label: str
    payload: str | bytes
    is_hex: bool = False


@dataclass(frozen=True)
class DeviceProfile:
    id: str
    name: str
    line_ending: str
    commands: tuple[QuickCommand, ...] = ()

    def command(self, label: str) -> QuickCommand | None:
        for command in self.commands:
            if command.label == label:
                return command
        return None


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    kind: TransportKind
    severity: Severity
    message: str
    raw_bytes: bytes | None = None


@dataclass(frozen=True)
class RenderedEntry:
    entry: LogEntry
    view_mode: ViewMode
    text: str


@dataclass(frozen=True)
class StatusChange:
    kind: TransportKind
    connected: bool
    message: str
    reconnect_available: bool = False


@dataclass(frozen=True)
class DeviceCandidate:
    kind: TransportKind
    id: str
    name: str
    detail: str = ""
    native: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class SerialConfig:
    port: str | None = None
    baudrate: int = 115200
    reconnect: bool = False


@dataclass(frozen=True)
class HIDConfig:
    path: bytes | None = None
    vendor_id: int | None = None
    product_id: int | None = None
    report_id_policy: ReportIdPolicy = ReportIdPolicy.LEADING_BYTE


@dataclass(frozen=True)
class BluetoothConfig:
    address: str | None = None
    service_uuid: str | None = None
    scan_timeout: float = 5.0
    write_with_response: bool = True


ConnectConfig = SerialConfig | HIDConfig | BluetoothConfig

DEFAULT_VIEW_MODES: dict[TransportKind, ViewMode] = {
    TransportKind.SERIAL: ViewMode.TEXT,
    TransportKind.HID: ViewMode.HEX,
    TransportKind.BLUETOOTH: ViewMode.HEX,
}

DEFAULT_CONFIGS: dict[TransportKind, ConnectConfig] = {
    TransportKind.SERIAL: SerialConfig(),
    TransportKind.HID: HIDConfig(),
    TransportKind.BLUETOOTH: BluetoothConfig(),
}
