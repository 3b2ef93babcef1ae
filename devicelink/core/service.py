"""Service layer used by the CLI and future UI frontends."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from devicelink.core.connection import ConnectionStateMachine
from devicelink.core.errors import ProtocolError
from devicelink.core.events import EventSink, LogCallback, StatusCallback
from devicelink.core.model import (
    DEFAULT_CONFIGS,
    ConnectConfig,
    DeviceCandidate,
    DeviceProfile,
    QuickCommand,
    SessionState,
    Severity,
    TransportKind,
    ViewMode,
)
from devicelink.core.profiles import DEFAULT_PROFILE_ID, ProfileRegistry
from devicelink.core.selection import DeviceSelector, single_candidate
from devicelink.transports.base import TransportDriver
from devicelink.transports.bluetooth import BluetoothDriver
from devicelink.transports.hid import HIDDriver
from devicelink.transports.serial import SerialDriver

LOGGER = logging.getLogger(__name__)

_DISPLAY_NAMES = {
    TransportKind.SERIAL: "Serial",
    TransportKind.HID: "HID",
    TransportKind.BLUETOOTH: "Bluetooth",
}


def _default_drivers() -> dict[TransportKind, TransportDriver]:
    return {
        TransportKind.SERIAL: SerialDriver(),
        TransportKind.HID: HIDDriver(),
        TransportKind.BLUETOOTH: BluetoothDriver(),
    }


class DeviceService:
    """One connection state machine per transport kind behind a single facade."""

    def __init__(
        self,
        *,
        drivers: Mapping[TransportKind, TransportDriver] | None = None,
        registry: ProfileRegistry | None = None,
        sink: EventSink | None = None,
        selector: DeviceSelector = single_candidate,
        profile_id: str = DEFAULT_PROFILE_ID,
    ) -> None:
        self.registry = registry or ProfileRegistry()
        self.load_warnings = self.registry.warnings
        self.sink = sink or EventSink()
        all_drivers = dict(_default_drivers())
        all_drivers.update(drivers or {})
        self.machines: dict[TransportKind, ConnectionStateMachine] = {
            kind: ConnectionStateMachine(driver, self.sink, selector=selector)
            for kind, driver in all_drivers.items()
        }
        self.profile: DeviceProfile = self.registry.get(profile_id)

    def _machine(self, kind: TransportKind | str) -> ConnectionStateMachine:
        return self.machines[TransportKind(kind)]

    def announce(self) -> None:
        """Log per-transport readiness, the way a front end shows it on start-up."""
        for kind, machine in self.machines.items():
            name = _DISPLAY_NAMES[kind]
            if not machine.driver.available():
                machine.log(f"{name} support is not available on this host", Severity.ERROR)
                continue
            if kind is TransportKind.SERIAL:
                machine.log(f"{name} ready. Select device profile and connect.")
            else:
                machine.log(f"{name} ready. Connect to start.")

    def state(self, kind: TransportKind | str) -> SessionState:
        return self._machine(kind).state

    def can_reconnect(self, kind: TransportKind | str = TransportKind.SERIAL) -> bool:
        return self._machine(kind).can_reconnect()

    async def list_devices(self, kind: TransportKind | str, config: ConnectConfig | None = None) -> list[DeviceCandidate]:
        machine = self._machine(kind)
        return list(await machine.driver.candidates(config or DEFAULT_CONFIGS[machine.kind]))

    async def connect(
        self,
        kind: TransportKind | str,
        config: ConnectConfig | None = None,
        *,
        selector: DeviceSelector | None = None,
    ) -> bool:
        machine = self._machine(kind)
        return await machine.connect(config or DEFAULT_CONFIGS[machine.kind], selector=selector)

    async def disconnect(self, kind: TransportKind | str) -> None:
        await self._machine(kind).disconnect()

    async def send(
        self,
        kind: TransportKind | str,
        payload: str | bytes,
        is_hex: bool = False,
        *,
        target: str | None = None,
    ) -> bool:
        return await self._machine(kind).send(payload, profile=self.profile, is_hex=is_hex, target=target)

    def quick_commands(self) -> tuple[QuickCommand, ...]:
        return self.profile.commands

    async def send_quick(self, kind: TransportKind | str, label: str, *, target: str | None = None) -> bool:
        command = self.profile.command(label)
        machine = self._machine(kind)
        if command is None:
            available = ", ".join(c.label for c in self.profile.commands) or "<none>"
            error = ProtocolError(
                f"Profile '{self.profile.id}' has no quick command '{label}'. Available: {available}"
            )
            machine.last_error = error
            machine.log(str(error), Severity.ERROR)
            return False
        return await machine.send(command.payload, profile=self.profile, is_hex=command.is_hex, target=target)

    def select_profile(self, profile_id: str) -> DeviceProfile:
        self.profile = self.registry.get(profile_id)
        LOGGER.info("Selected profile %s", self.profile.id)
        return self.profile

    def set_view_mode(self, kind: TransportKind | str, mode: ViewMode | str) -> None:
        self._machine(kind).set_view_mode(mode)

    def clear_log(self, kind: TransportKind | str) -> None:
        self.sink.clear(TransportKind(kind))

    def subscribe_log(self, callback: LogCallback) -> Callable[[], None]:
        return self.sink.subscribe(callback)

    def subscribe_status(self, callback: StatusCallback) -> Callable[[], None]:
        return self.sink.subscribe_status(callback)

    async def aclose(self) -> None:
        for machine in self.machines.values():
            await machine.aclose()
