"""Stable public API for building tooling on top of devicelink.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping

from devicelink.core.codec import encode, hex_decode, parse_hex_tokens, render_line, to_hex, to_text
from devicelink.core.errors import (
    AlreadyOpenError,
    DevicelinkError,
    NoDeviceSelectedError,
    PermissionDeniedError,
    ProfileLoadError,
    ProfileNotFoundError,
    ProfileValidationError,
    ProtocolError,
    SpontaneousDisconnectError,
    TransportIOError,
    UnsupportedCapabilityError,
)
from devicelink.core.events import LogCallback, StatusCallback
from devicelink.core.model import (
    BluetoothConfig,
    ConnectConfig,
    DeviceCandidate,
    DeviceProfile,
    HIDConfig,
    LogEntry,
    QuickCommand,
    RenderedEntry,
    ReportIdPolicy,
    SerialConfig,
    SessionState,
    Severity,
    StatusChange,
    TransportKind,
    ViewMode,
)
from devicelink.core.selection import DeviceSelector, single_candidate
from devicelink.core.service import DeviceService
from devicelink.transports.base import TransportDriver

__all__ = [
    "DevicelinkError",
    "UnsupportedCapabilityError",
    "NoDeviceSelectedError",
    "PermissionDeniedError",
    "AlreadyOpenError",
    "TransportIOError",
    "ProtocolError",
    "ProfileNotFoundError",
    "SpontaneousDisconnectError",
    "ProfileLoadError",
    "ProfileValidationError",
    "BluetoothConfig",
    "ConnectConfig",
    "DeviceCandidate",
    "DeviceProfile",
    "HIDConfig",
    "LogEntry",
    "QuickCommand",
    "RenderedEntry",
    "ReportIdPolicy",
    "SerialConfig",
    "SessionState",
    "Severity",
    "StatusChange",
    "TransportKind",
    "ViewMode",
    "DeviceSelector",
    "encode",
    "hex_decode",
    "parse_hex_tokens",
    "render_line",
    "to_hex",
    "to_text",
    "Client",
]


class Client:
    """Public client for the device-communication core.

    A `Client` wraps the profile catalog, the per-transport connection state
    machines and the log sink behind a transport-independent API intended for
    third-party tools (GUI/TUI/services/scripts). Every method is safe to call
    from the event loop that owns the client; connection, send and quick-command
    failures are reported through the log and status subscriptions instead of
    being raised. Catalog and view calls such as `select_profile` and
    `set_view_mode` raise on bad input.
    """

    def __init__(
        self,
        *,
        drivers: Mapping[TransportKind, TransportDriver] | None = None,
        selector: DeviceSelector = single_candidate,
        profile_id: str | None = None,
    ) -> None:
        kwargs = {"profile_id": profile_id} if profile_id else {}
        self._service = DeviceService(drivers=drivers, selector=selector, **kwargs)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def profile(self) -> DeviceProfile:
        return self._service.profile

    def list_profiles(self) -> list[DeviceProfile]:
        return self._service.registry.list()

    def select_profile(self, profile_id: str) -> DeviceProfile:
        return self._service.select_profile(profile_id)

    def quick_commands(self) -> tuple[QuickCommand, ...]:
        return self._service.quick_commands()

    def state(self, kind: TransportKind | str) -> SessionState:
        return self._service.state(kind)

    def last_error(self, kind: TransportKind | str) -> DevicelinkError | None:
        return self._service.machines[TransportKind(kind)].last_error

    def log_lines(self, kind: TransportKind | str) -> list[str]:
        return self._service.sink.lines(TransportKind(kind))

    async def list_devices(self, kind: TransportKind | str, config: ConnectConfig | None = None) -> list[DeviceCandidate]:
        return await self._service.list_devices(kind, config)

    async def connect(
        self,
        kind: TransportKind | str,
        config: ConnectConfig | None = None,
        *,
        selector: DeviceSelector | None = None,
    ) -> bool:
        return await self._service.connect(kind, config, selector=selector)

    async def disconnect(self, kind: TransportKind | str) -> None:
        await self._service.disconnect(kind)

    async def send(
        self,
        kind: TransportKind | str,
        payload: str | bytes,
        is_hex: bool = False,
        *,
        target: str | None = None,
    ) -> bool:
        return await self._service.send(kind, payload, is_hex, target=target)

    async def send_quick(self, kind: TransportKind | str, label: str, *, target: str | None = None) -> bool:
        return await self._service.send_quick(kind, label, target=target)

    def set_view_mode(self, kind: TransportKind | str, mode: ViewMode | str) -> None:
        self._service.set_view_mode(kind, mode)

    def clear_log(self, kind: TransportKind | str) -> None:
        self._service.clear_log(kind)

    def subscribe_log(self, callback: LogCallback) -> Callable[[], None]:
        return self._service.subscribe_log(callback)

    def subscribe_status(self, callback: StatusCallback) -> Callable[[], None]:
        return self._service.subscribe_status(callback)

    async def aclose(self) -> None:
        await self._service.aclose()
