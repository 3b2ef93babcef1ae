from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from devicelink.core.errors import ProfileNotFoundError
from devicelink.core.model import DeviceCandidate, SessionState, Severity, TransportKind, ViewMode
from devicelink.core.service import DeviceService


class RecordingDriver:
    streaming = False

    def __init__(self, kind: TransportKind, *, available: bool = True) -> None:
        self.kind = kind
        self._available = available
        self.device = DeviceCandidate(kind=kind, id=f"{kind.value}0", name=f"Fake {kind.value}")
        self.sent: list[tuple[str | bytes, bool, str, str | None]] = []

    def available(self) -> bool:
        return self._available

    async def candidates(self, config):
        return [self.device]

    async def select(self, session, config, selector):
        return await selector(self.kind, [self.device])

    async def open(self, session, candidate, config):
        session.native.acquire(object())
        return "Connected"

    async def start_receive(self, session) -> None:
        return None

    async def send(self, session, payload, *, is_hex, profile, target=None) -> None:
        self.sent.append((payload, is_hex, profile.id, target))
        session.log("TX:", Severity.TX, b"\x00")

    async def close(self, session) -> None:
        session.native.take()


@pytest.fixture(autouse=True)
def isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


def _service(**kwargs) -> tuple[DeviceService, dict[TransportKind, RecordingDriver]]:
    drivers = {kind: RecordingDriver(kind) for kind in TransportKind}
    return DeviceService(drivers=drivers, **kwargs), drivers


def test_default_profile_is_raw() -> None:
    service, _ = _service()
    assert service.profile.id == "raw"
    assert service.quick_commands() == ()


def test_unknown_profile_raises() -> None:
    with pytest.raises(ProfileNotFoundError):
        _service(profile_id="printer")


def test_announce_reports_missing_backends() -> None:
    drivers = {kind: RecordingDriver(kind) for kind in TransportKind}
    drivers[TransportKind.HID] = RecordingDriver(TransportKind.HID, available=False)
    service = DeviceService(drivers=drivers)

    service.announce()

    assert service.sink.lines(TransportKind.SERIAL)[-1].endswith("Serial ready. Select device profile and connect.")
    assert service.sink.lines(TransportKind.HID)[-1].endswith("HID support is not available on this host")
    assert service.sink.lines(TransportKind.BLUETOOTH)[-1].endswith("Bluetooth ready. Connect to start.")


def test_send_uses_selected_profile() -> None:
    service, drivers = _service()

    async def scenario() -> None:
        assert await service.connect("serial")
        service.select_profile("at")
        assert await service.send("serial", "ATI")
        assert await service.send_quick("serial", "Signal")
        await service.aclose()

    asyncio.run(scenario())
    assert drivers[TransportKind.SERIAL].sent == [
        ("ATI", False, "at", None),
        ("AT+CSQ", False, "at", None),
    ]


def test_quick_hex_command_is_sent_as_bytes() -> None:
    service, drivers = _service(profile_id="escpos")

    async def scenario() -> None:
        await service.connect(TransportKind.BLUETOOTH)
        await service.send_quick(TransportKind.BLUETOOTH, "Initialize", target="0000ffe1")
        await service.aclose()

    asyncio.run(scenario())
    assert drivers[TransportKind.BLUETOOTH].sent == [(b"\x1b\x40", True, "escpos", "0000ffe1")]


def test_unknown_quick_command_lists_labels() -> None:
    service, drivers = _service(profile_id="scale")

    async def scenario() -> bool:
        await service.connect("serial")
        sent = await service.send_quick("serial", "Calibrate")
        await service.aclose()
        return sent

    assert not asyncio.run(scenario())
    assert drivers[TransportKind.SERIAL].sent == []
    line = next(line for line in service.sink.lines(TransportKind.SERIAL) if "Calibrate" in line)
    assert "Available: Request Weight, Zero Scale, Tare" in line


def test_transports_are_independent() -> None:
    service, _ = _service()

    async def scenario() -> None:
        await service.connect("serial")
        assert service.state("serial") is SessionState.CONNECTED
        assert service.state("hid") is SessionState.DISCONNECTED
        await service.disconnect("hid")
        assert service.state("serial") is SessionState.CONNECTED
        await service.aclose()

    asyncio.run(scenario())


def test_list_devices_and_view_mode() -> None:
    service, _ = _service()

    devices = asyncio.run(service.list_devices("hid"))
    assert [device.id for device in devices] == ["hid0"]

    service.set_view_mode("serial", "both")
    assert service.machines[TransportKind.SERIAL].view_mode is ViewMode.BOTH
    service.clear_log("serial")
    assert len(service.sink.lines(TransportKind.SERIAL)) == 1
