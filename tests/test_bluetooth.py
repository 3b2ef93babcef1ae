from __future__ import annotations

import asyncio
from types import SimpleNamespace

from devicelink.core.connection import ConnectionStateMachine
from devicelink.core.errors import (
    NoDeviceSelectedError,
    ProtocolError,
    SpontaneousDisconnectError,
    TransportIOError,
)
from devicelink.core.events import EventSink
from devicelink.core.model import BluetoothConfig, DeviceProfile, SessionState, TransportKind
from devicelink.transports.bluetooth import BleakBackend, BluetoothDriver

RAW = DeviceProfile(id="raw", name="Raw Data", line_ending="")
SERVICE = "0000ffe0-0000-1000-8000-00805f9b34fb"
NOTIFY = "0000ffe1-0000-1000-8000-00805f9b34fb"
WRITE = "0000ffe2-0000-1000-8000-00805f9b34fb"
SENSOR = SimpleNamespace(address="AA:BB:CC:DD:EE:FF", name="Sensor")


class FakeBleakError(Exception):
    pass


class FakeClient:
    def __init__(self, device, disconnected_callback=None, connect_error: Exception | None = None) -> None:
        self.device = device
        self.disconnected_callback = disconnected_callback
        self.connect_error = connect_error
        self.is_connected = False
        self.disconnects = 0
        self.notify_handlers: dict[str, object] = {}
        self.writes: list[tuple[str, bytes, bool]] = []
        self._chars = {
            NOTIFY: SimpleNamespace(uuid=NOTIFY, properties=["read", "notify"]),
            WRITE: SimpleNamespace(uuid=WRITE, properties=["write"]),
        }
        self.services = [SimpleNamespace(uuid=SERVICE, characteristics=list(self._chars.values()))]

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.is_connected = True

    async def start_notify(self, characteristic, handler) -> None:
        self.notify_handlers[characteristic.uuid] = handler

    async def write_gatt_char(self, characteristic, data, response=False) -> None:
        self.writes.append((characteristic.uuid, bytes(data), response))

    async def disconnect(self) -> None:
        self.disconnects += 1
        self.is_connected = False

    def notify(self, uuid: str, data: bytes) -> None:
        self.notify_handlers[uuid](self._chars[uuid], bytearray(data))

    def drop(self) -> None:
        self.is_connected = False
        self.disconnected_callback(self)


class FakeScanner:
    def __init__(self, devices) -> None:
        self.devices = list(devices)

    async def discover(self, timeout=5.0, service_uuids=None):
        return list(self.devices)

    async def find_device_by_address(self, address, timeout=5.0):
        for device in self.devices:
            if device.address == address:
                return device
        return None


def _setup(devices=(SENSOR,), connect_error: Exception | None = None):
    clients: list[FakeClient] = []

    def factory(device, disconnected_callback=None):
        client = FakeClient(device, disconnected_callback, connect_error)
        clients.append(client)
        return client

    backend = BleakBackend(client_factory=factory, scanner=FakeScanner(devices), errors=(FakeBleakError,))
    sink = EventSink()
    machine = ConnectionStateMachine(BluetoothDriver(backend=backend), sink)
    return machine, sink, clients


def test_connect_discovers_services_and_subscribes() -> None:
    machine, sink, clients = _setup()

    async def scenario() -> None:
        assert await machine.connect(BluetoothConfig(address=SENSOR.address))
        assert machine.state is SessionState.CONNECTED
        assert sorted(machine.session.characteristics.ids()) == [NOTIFY, WRITE]
        await machine.aclose()

    asyncio.run(scenario())
    client = clients[0]
    assert list(client.notify_handlers) == [NOTIFY]
    assert client.disconnects == 1
    lines = sink.lines(TransportKind.BLUETOOTH)
    assert any(line.endswith("Device selected: Sensor") for line in lines)
    assert any(line.endswith("Found 1 service(s)") for line in lines)
    assert any(line.endswith(f"Notifications enabled for {NOTIFY}") for line in lines)


def test_notifications_are_logged_with_text_note() -> None:
    machine, sink, clients = _setup()

    async def scenario() -> None:
        await machine.connect(BluetoothConfig())
        clients[0].notify(NOTIFY, b"Hi")
        await machine.wait_idle()
        await machine.aclose()

    asyncio.run(scenario())
    lines = sink.lines(TransportKind.BLUETOOTH)
    assert any(line.endswith(f"RX [{NOTIFY}]: 48 69") for line in lines)
    assert any(line.endswith('Text: "Hi"') for line in lines)


def test_write_to_known_characteristic() -> None:
    machine, sink, clients = _setup()

    async def scenario() -> None:
        await machine.connect(BluetoothConfig(write_with_response=False))
        assert await machine.send("hello", profile=RAW, target=WRITE.upper())
        assert await machine.send("0102", profile=RAW, is_hex=True, target=WRITE)
        await machine.aclose()

    asyncio.run(scenario())
    assert clients[0].writes == [(WRITE, b"hello", False), (WRITE, b"\x01\x02", False)]
    assert any(line.endswith(f"TX [{WRITE}]: 01 02") for line in sink.lines(TransportKind.BLUETOOTH))


def test_unknown_characteristic_lists_available_and_keeps_session() -> None:
    machine, sink, clients = _setup()

    async def scenario() -> bool:
        await machine.connect(BluetoothConfig())
        sent = await machine.send("hello", profile=RAW, target="0000abcd-0000-1000-8000-00805f9b34fb")
        assert machine.state is SessionState.CONNECTED
        await machine.aclose()
        return sent

    assert not asyncio.run(scenario())
    assert clients[0].writes == []
    assert isinstance(machine.last_error, ProtocolError)
    message = str(machine.last_error)
    assert NOTIFY in message
    assert WRITE in message


def test_send_without_characteristic_is_rejected() -> None:
    machine, _, _ = _setup()

    async def scenario() -> bool:
        await machine.connect(BluetoothConfig())
        sent = await machine.send("hello", profile=RAW)
        await machine.aclose()
        return sent

    assert not asyncio.run(scenario())
    assert "Please provide characteristic UUID and data" in str(machine.last_error)


def test_peer_disconnect_invalidates_session() -> None:
    machine, sink, clients = _setup()

    async def scenario():
        await machine.connect(BluetoothConfig())
        session = machine.session
        clients[0].drop()
        await machine.wait_idle()
        await machine.aclose()
        return session

    session = asyncio.run(scenario())
    assert machine.state is SessionState.DISCONNECTED
    assert isinstance(machine.last_error, SpontaneousDisconnectError)
    assert session.characteristics.stale
    assert clients[0].disconnects == 0
    assert sink.status(TransportKind.BLUETOOTH).message == "Disconnected"


def test_ambiguous_scan_requires_explicit_choice() -> None:
    other = SimpleNamespace(address="11:22:33:44:55:66", name=None)
    machine, _, clients = _setup(devices=(SENSOR, other))

    async def scenario() -> bool:
        try:
            return await machine.connect(BluetoothConfig(service_uuid=SERVICE))
        finally:
            await machine.aclose()

    assert not asyncio.run(scenario())
    assert isinstance(machine.last_error, NoDeviceSelectedError)
    assert "Unknown" in str(machine.last_error)
    assert clients == []


def test_unknown_address() -> None:
    machine, _, _ = _setup()

    async def scenario() -> bool:
        try:
            return await machine.connect(BluetoothConfig(address="00:00:00:00:00:00"))
        finally:
            await machine.aclose()

    assert not asyncio.run(scenario())
    assert isinstance(machine.last_error, NoDeviceSelectedError)


def test_connect_failure_is_transport_error() -> None:
    machine, _, _ = _setup(connect_error=FakeBleakError("timeout"))

    async def scenario() -> bool:
        try:
            return await machine.connect(BluetoothConfig())
        finally:
            await machine.aclose()

    assert not asyncio.run(scenario())
    assert isinstance(machine.last_error, TransportIOError)
    assert machine.history[-2:] == [SessionState.ERROR, SessionState.DISCONNECTED]
