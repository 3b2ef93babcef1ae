"""HID transport implementation using hidapi."""

from __future__ import annotations

import asyncio
import errno
import logging
from collections.abc import Sequence
from typing import Any

from devicelink.core.codec import parse_hex_tokens
from devicelink.core.errors import (
    NoDeviceSelectedError,
    PermissionDeniedError,
    ProtocolError,
    TransportIOError,
    UnsupportedCapabilityError,
)
from devicelink.core.model import (
    DeviceCandidate,
    DeviceProfile,
    HIDConfig,
    ReportIdPolicy,
    Severity,
    TransportKind,
)
from devicelink.core.selection import DeviceSelector
from devicelink.transports.base import DataReceived, ReceiveFailed, TransportSession

REPORT_SIZE = 64
READ_TIMEOUT_MS = 100
LOGGER = logging.getLogger(__name__)


def _load_backend() -> Any:
    try:
        import hid  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise UnsupportedCapabilityError(
            "HID transport requires 'hidapi'. Install dependency and retry."
        ) from exc
    return hid


def _path_id(path: bytes | str) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


def _candidate(info: dict[str, Any]) -> DeviceCandidate:
    vid = info.get("vendor_id", 0) or 0
    pid = info.get("product_id", 0) or 0
    return DeviceCandidate(
        kind=TransportKind.HID,
        id=_path_id(info["path"]),
        name=info.get("product_string") or "Unknown",
        detail=f"VID: 0x{vid:04x} / PID: 0x{pid:04x}",
        native=info,
    )


def split_report(tokens: Sequence[int], policy: ReportIdPolicy) -> tuple[int, bytes]:
    """Split a byte sequence into ``(report_id, payload)`` under ``policy``."""
    if policy is ReportIdPolicy.NONE:
        return 0, bytes(tokens)
    if not tokens:
        raise ProtocolError("No data to send")
    return tokens[0], bytes(tokens[1:])


class HIDDriver:
    kind = TransportKind.HID
    streaming = False

    def __init__(self, *, backend: Any | None = None) -> None:
        self._backend = backend

    def _hid(self) -> Any:
        if self._backend is None:
            self._backend = _load_backend()
        return self._backend

    def available(self) -> bool:
        try:
            self._hid()
        except UnsupportedCapabilityError:
            return False
        return True

    async def candidates(self, config: HIDConfig) -> Sequence[DeviceCandidate]:
        hid = self._hid()
        found: list[DeviceCandidate] = []
        for info in hid.enumerate(config.vendor_id or 0, config.product_id or 0):
            found.append(_candidate(info))
        return found

    async def select(
        self, session: TransportSession, config: HIDConfig, selector: DeviceSelector
    ) -> DeviceCandidate:
        session.log("Opening device picker...")
        found = await self.candidates(config)
        if config.path is not None:
            wanted = _path_id(config.path)
            for candidate in found:
                if candidate.id == wanted:
                    return candidate
            raise NoDeviceSelectedError(f"No HID device at path {wanted}")
        if not found:
            raise NoDeviceSelectedError("No device selected")
        chosen = await selector(self.kind, found)
        if chosen is None:
            raise NoDeviceSelectedError("No device selected")
        return chosen

    async def open(self, session: TransportSession, candidate: DeviceCandidate, config: HIDConfig) -> str:
        hid = self._hid()
        device = hid.device()
        try:
            device.open_path(candidate.native["path"])
        except OSError as exc:
            if getattr(exc, "errno", None) in {errno.EACCES, errno.EPERM}:
                raise PermissionDeniedError(f"Access to {candidate.name} was denied: {exc}") from exc
            raise TransportIOError(f"Could not open {candidate.name}: {exc}") from exc

        session.native.acquire(device)
        session.device = candidate
        session.options["report_id_policy"] = config.report_id_policy

        info = candidate.native
        session.log(f"Connected: {candidate.name}", Severity.SUCCESS)
        session.log(f"   VID: 0x{(info.get('vendor_id') or 0):04x}")
        session.log(f"   PID: 0x{(info.get('product_id') or 0):04x}")
        return "Connected"

    async def start_receive(self, session: TransportSession) -> None:
        device = session.native.get()
        loop = asyncio.get_running_loop()
        session.receive_task = loop.run_in_executor(None, self._poll, session, device)

    def _poll(self, session: TransportSession, device: Any) -> None:
        # Runs in an executor thread; everything it reports crosses back thread-safely.
        policy = session.options.get("report_id_policy", ReportIdPolicy.LEADING_BYTE)
        while not session.cancelled:
            try:
                report = device.read(REPORT_SIZE, READ_TIMEOUT_MS)
            except (OSError, ValueError) as exc:
                if session.cancelled:
                    LOGGER.debug("HID read error after cancel suppressed: %s", exc)
                else:
                    session.channel.post_threadsafe(ReceiveFailed(TransportIOError(f"Read error: {exc}")))
                return
            if not report:
                continue
            report_id, payload = split_report(list(report), policy)
            session.channel.post_threadsafe(DataReceived(f"RX [Report {report_id}]:", payload))

    async def send(
        self,
        session: TransportSession,
        payload: str | bytes,
        *,
        is_hex: bool,
        profile: DeviceProfile,
        target: str | None = None,
    ) -> None:
        device = session.native.get()
        tokens = list(payload) if isinstance(payload, (bytes, bytearray)) else parse_hex_tokens(payload)
        policy = session.options.get("report_id_policy", ReportIdPolicy.LEADING_BYTE)
        report_id, data = split_report(tokens, policy)
        try:
            written = device.write(bytes([report_id]) + data)
        except (OSError, ValueError) as exc:
            raise TransportIOError(f"Send error: {exc}") from exc
        if written is not None and written < 0:
            raise TransportIOError("Send error: device rejected the report")
        session.log(f"TX [Report {report_id}]:", Severity.TX, data)

    async def close(self, session: TransportSession) -> None:
        session.cancelled = True
        task = session.receive_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        device = session.native.take()
        if device is not None:
            try:
                device.close()
            except OSError as exc:
                raise TransportIOError(f"Disconnect error: {exc}") from exc
