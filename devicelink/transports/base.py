"""Transport interfaces and per-session handle bookkeeping."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from devicelink.core.errors import HandleOwnershipError, ProtocolError, TransportIOError
from devicelink.core.model import (
    ConnectConfig,
    DeviceCandidate,
    DeviceProfile,
    TransportKind,
)
from devicelink.core.selection import DeviceSelector

T = TypeVar("T")

_session_ids = itertools.count(1)

SessionLog = Callable[..., None]


class OwnedHandle(Generic[T]):
    """A native handle that is acquired at most once and released at most once."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._value: T | None = None
        self._acquired = False
        self._released = False

    @property
    def held(self) -> bool:
        return self._acquired and not self._released

    @property
    def released(self) -> bool:
        return self._released

    def acquire(self, value: T) -> None:
        if self._acquired:
            raise HandleOwnershipError(f"{self.name} handle was already acquired for this session")
        self._value = value
        self._acquired = True

    def get(self) -> T:
        if not self.held:
            raise HandleOwnershipError(f"{self.name} handle is not held")
        return self._value  # type: ignore[return-value]

    def take(self) -> T | None:
        """Move the handle out for release; None when it was never acquired or is gone."""
        if not self.held:
            return None
        value = self._value
        self._value = None
        self._released = True
        return value


class CharacteristicMap:
    """GATT characteristics of one live session, keyed by lowercase uuid."""

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}
        self._stale = False

    @property
    def stale(self) -> bool:
        return self._stale

    def register(self, uuid: str, characteristic: Any) -> None:
        if self._stale:
            raise HandleOwnershipError("characteristic map is stale")
        self._entries[uuid.lower()] = characteristic

    def ids(self) -> list[str]:
        return list(self._entries)

    def get(self, uuid: str) -> Any:
        if self._stale:
            raise ProtocolError(f"Characteristic {uuid} not found: session is disconnected")
        characteristic = self._entries.get(uuid.strip().lower())
        if characteristic is None:
            known = ", ".join(self._entries) or "<none>"
            raise ProtocolError(f"Characteristic {uuid} not found. Available characteristics: {known}")
        return characteristic

    def invalidate(self) -> None:
        self._entries.clear()
        self._stale = True

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class DataReceived:
    label: str
    data: bytes
    note: str | None = None


@dataclass(frozen=True)
class StreamEnded:
    pass


@dataclass(frozen=True)
class ReceiveFailed:
    error: TransportIOError


@dataclass(frozen=True)
class PeerDisconnected:
    pass


SessionEvent = DataReceived | StreamEnded | ReceiveFailed | PeerDisconnected


@dataclass(frozen=True)
class SessionMessage:
    session_id: int
    event: SessionEvent


class SessionChannel:
    """Tags events with the session id on their way into the dispatcher inbox.

    ``post`` must run on the event loop; threads go through ``post_threadsafe``.
    """

    def __init__(self, session_id: int, inbox: asyncio.Queue[SessionMessage], loop: asyncio.AbstractEventLoop) -> None:
        self.session_id = session_id
        self._inbox = inbox
        self._loop = loop

    def post(self, event: SessionEvent) -> None:
        self._inbox.put_nowait(SessionMessage(self.session_id, event))

    def post_threadsafe(self, event: SessionEvent) -> None:
        self._loop.call_soon_threadsafe(self.post, event)


class TransportSession:
    def __init__(self, kind: TransportKind, channel_factory: Callable[[int], SessionChannel], log: SessionLog) -> None:
        self.kind = kind
        self.session_id = next(_session_ids)
        self.channel = channel_factory(self.session_id)
        self.log = log
        self.device: DeviceCandidate | None = None
        self.native: OwnedHandle[Any] = OwnedHandle("native")
        self.reader: OwnedHandle[Any] = OwnedHandle("reader")
        self.writer: OwnedHandle[Any] = OwnedHandle("writer")
        self.characteristics = CharacteristicMap()
        self.receive_task: asyncio.Future[Any] | None = None
        self.cancelled = False
        self.options: dict[str, Any] = {}

    def holds_handles(self) -> bool:
        return self.native.held or self.reader.held or self.writer.held

    def __repr__(self) -> str:
        return f"TransportSession(kind={self.kind.value}, id={self.session_id})"


class TransportDriver(Protocol):
    kind: TransportKind
    streaming: bool

    def available(self) -> bool:
        """Return True when the backend library can be imported."""

    async def candidates(self, config: ConnectConfig) -> Sequence[DeviceCandidate]:
        """List devices the user may pick from."""

    async def select(
        self, session: TransportSession, config: ConnectConfig, selector: DeviceSelector
    ) -> DeviceCandidate:
        """Resolve the device to open, prompting through ``selector`` when needed."""

    async def open(self, session: TransportSession, candidate: DeviceCandidate, config: ConnectConfig) -> str:
        """Open the device, acquire the session handles and return the status message."""

    async def start_receive(self, session: TransportSession) -> None:
        """Start delivering inbound data to ``session.channel``."""

    async def send(
        self,
        session: TransportSession,
        payload: str | bytes,
        *,
        is_hex: bool,
        profile: DeviceProfile,
        target: str | None = None,
    ) -> None:
        """Encode and write one payload, logging it once the write completes."""

    async def close(self, session: TransportSession) -> None:
        """Release whichever handles the session still holds."""

