"""Serial transport implementation on top of pyserial-asyncio streams."""

from __future__ import annotations

import asyncio
import errno
import logging
from collections.abc import Callable, Sequence
from typing import Any

from devicelink.core.codec import encode, hex_decode
from devicelink.core.errors import (
    AlreadyOpenError,
    DevicelinkError,
    NoDeviceSelectedError,
    PermissionDeniedError,
    ProtocolError,
    TransportIOError,
    UnsupportedCapabilityError,
)
from devicelink.core.model import (
    DeviceCandidate,
    DeviceProfile,
    SerialConfig,
    Severity,
    TransportKind,
)
from devicelink.core.selection import DeviceSelector
from devicelink.transports.base import (
    DataReceived,
    ReceiveFailed,
    StreamEnded,
    TransportSession,
)

READ_CHUNK_SIZE = 4096
LOGGER = logging.getLogger(__name__)

_PERMISSION_ERRNOS = {errno.EACCES, errno.EPERM}
_BUSY_ERRNOS = {errno.EBUSY}


def _load_opener() -> Callable[..., Any]:
    try:
        import serial_asyncio  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise UnsupportedCapabilityError(
            "Serial transport requires 'pyserial-asyncio'. Install dependency and retry."
        ) from exc
    return serial_asyncio.open_serial_connection


def _load_lister() -> Callable[[], Sequence[Any]]:
    try:
        from serial.tools import list_ports  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise UnsupportedCapabilityError(
            "Serial transport requires 'pyserial'. Install dependency and retry."
        ) from exc
    return list_ports.comports


def _open_error(exc: Exception, port: str) -> DevicelinkError:
    code = getattr(exc, "errno", None)
    text = str(exc)
    lowered = text.lower()
    if code in _PERMISSION_ERRNOS or "permission denied" in lowered or "access is denied" in lowered:
        return PermissionDeniedError(f"Access to {port} was denied: {text}")
    if code in _BUSY_ERRNOS or "busy" in lowered or "already open" in lowered:
        return AlreadyOpenError(f"{port} is already open. Device may be in use: {text}")
    return TransportIOError(f"Could not open {port}: {text}")


class SerialDriver:
    kind = TransportKind.SERIAL
    streaming = True

    def __init__(
        self,
        *,
        opener: Callable[..., Any] | None = None,
        lister: Callable[[], Sequence[Any]] | None = None,
    ) -> None:
        self._opener = opener
        self._lister = lister
        self._authorized: list[DeviceCandidate] = []

    @property
    def authorized(self) -> tuple[DeviceCandidate, ...]:
        """Ports opened successfully earlier in this process, oldest first."""
        return tuple(self._authorized)

    def available(self) -> bool:
        try:
            self._opener or _load_opener()
            self._lister or _load_lister()
        except UnsupportedCapabilityError:
            return False
        return True

    async def candidates(self, config: SerialConfig) -> Sequence[DeviceCandidate]:
        lister = self._lister or _load_lister()
        found: list[DeviceCandidate] = []
        for port in lister():
            detail = ""
            if getattr(port, "vid", None) is not None and getattr(port, "pid", None) is not None:
                detail = f"VID: 0x{port.vid:04x} / PID: 0x{port.pid:04x}"
            found.append(
                DeviceCandidate(
                    kind=self.kind,
                    id=port.device,
                    name=getattr(port, "description", None) or port.device,
                    detail=detail,
                    native=port,
                )
            )
        return found

    async def select(
        self, session: TransportSession, config: SerialConfig, selector: DeviceSelector
    ) -> DeviceCandidate:
        if config.reconnect:
            if not self._authorized:
                raise NoDeviceSelectedError("No previously authorized devices found")
            session.log(f"Reconnecting to last device ({config.baudrate} baud)...")
            return self._authorized[-1]

        session.log(f"Requesting serial port (Baud: {config.baudrate})...")
        if config.port:
            return DeviceCandidate(kind=self.kind, id=config.port, name=config.port)

        found = await self.candidates(config)
        if not found:
            raise NoDeviceSelectedError("No serial ports found")
        chosen = await selector(self.kind, found)
        if chosen is None:
            raise NoDeviceSelectedError("No port selected")
        return chosen

    async def open(self, session: TransportSession, candidate: DeviceCandidate, config: SerialConfig) -> str:
        opener = self._opener or _load_opener()
        try:
            reader, writer = await opener(
                url=candidate.id,
                baudrate=config.baudrate,
                bytesize=8,
                parity="N",
                stopbits=1,
                xonxoff=False,
                rtscts=False,
            )
        except (OSError, ValueError) as exc:
            raise _open_error(exc, candidate.id) from exc

        session.native.acquire(writer.transport)
        session.reader.acquire(reader)
        session.writer.acquire(writer)
        session.device = candidate
        self._remember(candidate)

        if config.reconnect:
            session.log("Reconnected!", Severity.SUCCESS)
            return "Connected (Remembered)"
        session.log(f"Connected! Baud rate: {config.baudrate}", Severity.SUCCESS)
        return "Connected"

    def _remember(self, candidate: DeviceCandidate) -> None:
        self._authorized = [c for c in self._authorized if c.id != candidate.id]
        self._authorized.append(candidate)

    async def start_receive(self, session: TransportSession) -> None:
        session.receive_task = asyncio.create_task(
            self._pump(session), name=f"serial-reader-{session.session_id}"
        )

    async def _pump(self, session: TransportSession) -> None:
        reader = session.reader.get()
        try:
            while not session.cancelled:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    session.channel.post(StreamEnded())
                    break
                session.channel.post(DataReceived("RX:", bytes(chunk)))
        except asyncio.CancelledError:
            if not session.cancelled:
                raise
        except OSError as exc:
            if session.cancelled:
                LOGGER.debug("Read error after cancel suppressed: %s", exc)
            else:
                session.channel.post(ReceiveFailed(TransportIOError(f"Read error: {exc}")))
        finally:
            session.reader.take()

    async def send(
        self,
        session: TransportSession,
        payload: str | bytes,
        *,
        is_hex: bool,
        profile: DeviceProfile,
        target: str | None = None,
    ) -> None:
        writer = session.writer.get()
        if is_hex and isinstance(payload, str):
            payload = hex_decode(payload)
        data = encode(payload, profile, is_hex)
        if not data:
            raise ProtocolError("No data to send")
        try:
            writer.write(data)
            await writer.drain()
        except OSError as exc:
            raise TransportIOError(f"Send error: {exc}") from exc
        session.log("TX:", Severity.TX, data)

    async def close(self, session: TransportSession) -> None:
        session.cancelled = True
        task = session.receive_task
        if task is not None:
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        session.reader.take()
        writer = session.writer.take()
        native = session.native.take()
        try:
            if writer is not None:
                writer.close()
                await writer.wait_closed()
            elif native is not None:
                native.close()
        except OSError as exc:
            raise TransportIOError(f"Disconnect error: {exc}") from exc
