"""BLE GATT transport implementation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from devicelink.core.codec import hex_decode, is_printable_text
from devicelink.core.errors import (
    NoDeviceSelectedError,
    ProtocolError,
    TransportIOError,
    UnsupportedCapabilityError,
)
from devicelink.core.model import (
    BluetoothConfig,
    DeviceCandidate,
    DeviceProfile,
    Severity,
    TransportKind,
)
from devicelink.core.selection import DeviceSelector
from devicelink.transports.base import DataReceived, PeerDisconnected, TransportSession

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BleakBackend:
    client_factory: Callable[..., Any]
    scanner: Any
    errors: tuple[type[BaseException], ...]


def _load_backend() -> BleakBackend:
    try:
        from bleak import BleakClient, BleakScanner  # type: ignore
        from bleak.exc import BleakError  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise UnsupportedCapabilityError(
            "BLE transport requires 'bleak'. Install dependency and retry."
        ) from exc
    return BleakBackend(
        client_factory=BleakClient,
        scanner=BleakScanner,
        errors=(BleakError, OSError, asyncio.TimeoutError),
    )


def _candidate(device: Any) -> DeviceCandidate:
    return DeviceCandidate(
        kind=TransportKind.BLUETOOTH,
        id=device.address,
        name=device.name or "Unknown",
        native=device,
    )


class BluetoothDriver:
    kind = TransportKind.BLUETOOTH
    streaming = False

    def __init__(self, *, backend: BleakBackend | None = None) -> None:
        self._backend = backend

    def _bleak(self) -> BleakBackend:
        if self._backend is None:
            self._backend = _load_backend()
        return self._backend

    def available(self) -> bool:
        try:
            self._bleak()
        except UnsupportedCapabilityError:
            return False
        return True

    async def candidates(self, config: BluetoothConfig) -> Sequence[DeviceCandidate]:
        bleak = self._bleak()
        service_uuids = [config.service_uuid] if config.service_uuid else None
        try:
            devices = await bleak.scanner.discover(timeout=config.scan_timeout, service_uuids=service_uuids)
        except bleak.errors as exc:
            raise TransportIOError(f"Bluetooth scan failed: {exc}") from exc
        return [_candidate(device) for device in devices]

    async def select(
        self, session: TransportSession, config: BluetoothConfig, selector: DeviceSelector
    ) -> DeviceCandidate:
        bleak = self._bleak()
        session.log("Opening device picker...")
        if config.address:
            try:
                device = await bleak.scanner.find_device_by_address(config.address, timeout=config.scan_timeout)
            except bleak.errors as exc:
                raise TransportIOError(f"Bluetooth scan failed: {exc}") from exc
            if device is None:
                raise NoDeviceSelectedError(f"No Bluetooth device found at {config.address}")
            chosen = _candidate(device)
        else:
            found = await self.candidates(config)
            if not found:
                raise NoDeviceSelectedError("No device selected")
            chosen = await selector(self.kind, found)
            if chosen is None:
                raise NoDeviceSelectedError("No device selected")
        session.log(f"Device selected: {chosen.name}")
        return chosen

    async def open(self, session: TransportSession, candidate: DeviceCandidate, config: BluetoothConfig) -> str:
        bleak = self._bleak()

        def _on_disconnect(_: Any) -> None:
            session.channel.post(PeerDisconnected())

        client = bleak.client_factory(candidate.native or candidate.id, disconnected_callback=_on_disconnect)
        try:
            await client.connect()
        except bleak.errors as exc:
            raise TransportIOError(f"BLE connect failed for {candidate.id}: {exc}") from exc
        session.native.acquire(client)
        session.device = candidate
        session.options["write_with_response"] = config.write_with_response
        session.log("Connected to GATT server", Severity.SUCCESS)

        try:
            await self._discover(session, client)
        except bleak.errors as exc:
            raise TransportIOError(f"GATT discovery failed: {exc}") from exc
        return "Connected"

    async def _discover(self, session: TransportSession, client: Any) -> None:
        services = list(client.services)
        session.log(f"Found {len(services)} service(s)")
        for service in services:
            session.log(f"  Service: {service.uuid}")
            for characteristic in service.characteristics:
                session.log(f"    Characteristic: {characteristic.uuid}")
                session.characteristics.register(characteristic.uuid, characteristic)
                if "notify" in characteristic.properties:
                    await client.start_notify(characteristic, self._notification_handler(session))
                    session.log(f"    Notifications enabled for {characteristic.uuid}", Severity.SUCCESS)

    @staticmethod
    def _notification_handler(session: TransportSession) -> Callable[[Any, bytearray], None]:
        def _handle(sender: Any, data: bytearray) -> None:
            payload = bytes(data)
            note = None
            if is_printable_text(payload):
                note = f'    Text: "{payload.decode("utf-8")}"'
            session.channel.post(DataReceived(f"RX [{sender.uuid}]:", payload, note))

        return _handle

    async def start_receive(self, session: TransportSession) -> None:
        # Notifications are subscribed during discovery; nothing to pump.
        return None

    async def send(
        self,
        session: TransportSession,
        payload: str | bytes,
        *,
        is_hex: bool,
        profile: DeviceProfile,
        target: str | None = None,
    ) -> None:
        client = session.native.get()
        if not target:
            raise ProtocolError("Please provide characteristic UUID and data")
        characteristic = session.characteristics.get(target)
        if isinstance(payload, (bytes, bytearray)):
            data = bytes(payload)
        elif is_hex:
            data = hex_decode(payload)
        else:
            data = payload.encode("utf-8")
        bleak = self._bleak()
        try:
            await client.write_gatt_char(
                characteristic,
                data,
                response=session.options.get("write_with_response", True),
            )
        except bleak.errors as exc:
            raise TransportIOError(f"Send error: {exc}") from exc
        session.log(f"TX [{characteristic.uuid}]:", Severity.TX, data)

    async def close(self, session: TransportSession) -> None:
        session.cancelled = True
        session.characteristics.invalidate()
        client = session.native.take()
        if client is None or not client.is_connected:
            return
        bleak = self._bleak()
        try:
            await client.disconnect()
        except bleak.errors as exc:
            raise TransportIOError(f"Disconnect error: {exc}") from exc
