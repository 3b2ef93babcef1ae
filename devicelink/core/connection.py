"""Per-transport connection life-cycle.

One ``ConnectionStateMachine`` owns at most one live ``TransportSession`` for its
transport kind. It is the only place that changes session state. Inbound
events from drivers arrive as ``SessionMessage`` objects on a single inbox and
are applied by one dispatcher task, which drops anything tagged with a session
id other than the live one.
"""

from __future__ import annotations

import asyncio
import logging

from devicelink.core.errors import (
    AlreadyOpenError,
    DevicelinkError,
    InvalidTransitionError,
    ProtocolError,
    SpontaneousDisconnectError,
    TransportIOError,
)
from devicelink.core.events import EventSink, make_entry
from devicelink.core.model import (
    DEFAULT_VIEW_MODES,
    ConnectConfig,
    DeviceProfile,
    SessionState,
    Severity,
    StatusChange,
    ViewMode,
)
from devicelink.core.selection import DeviceSelector, single_candidate
from devicelink.transports.base import (
    DataReceived,
    PeerDisconnected,
    ReceiveFailed,
    SessionChannel,
    SessionMessage,
    StreamEnded,
    TransportDriver,
    TransportSession,
)

LOGGER = logging.getLogger(__name__)

TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.DISCONNECTED: frozenset({SessionState.CONNECTING}),
    SessionState.CONNECTING: frozenset(
        {SessionState.CONNECTED, SessionState.ERROR, SessionState.DISCONNECTED}
    ),
    SessionState.CONNECTED: frozenset(
        {SessionState.READING, SessionState.ERROR, SessionState.DISCONNECTED}
    ),
    SessionState.READING: frozenset({SessionState.ERROR, SessionState.DISCONNECTED}),
    SessionState.ERROR: frozenset({SessionState.CONNECTING, SessionState.DISCONNECTED}),
}

_LIVE = (SessionState.CONNECTED, SessionState.READING)


class _ConnectAborted(Exception):
    pass


class ConnectionStateMachine:
    def __init__(
        self,
        driver: TransportDriver,
        sink: EventSink,
        *,
        selector: DeviceSelector = single_candidate,
        view_mode: ViewMode | None = None,
    ) -> None:
        self.driver = driver
        self.kind = driver.kind
        self.view_mode = view_mode or DEFAULT_VIEW_MODES[self.kind]
        self.last_error: DevicelinkError | None = None
        self.history: list[SessionState] = [SessionState.DISCONNECTED]
        self._sink = sink
        self._selector = selector
        self._state = SessionState.DISCONNECTED
        self._session: TransportSession | None = None
        self._retired: list[TransportSession] = []
        self._inbox: asyncio.Queue[SessionMessage] | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._abort_errors: dict[int, DevicelinkError] = {}

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> TransportSession | None:
        return self._session

    # -- logging / status -------------------------------------------------

    def log(self, message: str, severity: Severity = Severity.INFO, raw_bytes: bytes | None = None) -> None:
        self._sink.append(make_entry(self.kind, message, severity, raw_bytes), self.view_mode)

    def can_reconnect(self) -> bool:
        return bool(getattr(self.driver, "authorized", ()))

    def _status(self, connected: bool, message: str) -> None:
        self._sink.set_status(
            StatusChange(
                kind=self.kind,
                connected=connected,
                message=message,
                reconnect_available=not connected and self.can_reconnect(),
            )
        )

    def _announce_authorized(self) -> None:
        authorized = getattr(self.driver, "authorized", ())
        if authorized:
            self.log(f"Found {len(authorized)} previously authorized device(s)")

    def set_view_mode(self, mode: ViewMode | str) -> None:
        self.view_mode = ViewMode(mode)
        self.log(f"View mode changed to: {self.view_mode.value}")

    # -- state ------------------------------------------------------------

    def _transition(self, new: SessionState) -> None:
        if new not in TRANSITIONS[self._state]:
            raise InvalidTransitionError(
                f"{self.kind.value}: illegal transition {self._state.value} -> {new.value}"
            )
        LOGGER.debug("%s: %s -> %s", self.kind.value, self._state.value, new.value)
        self._state = new
        self.history.append(new)

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is None or self._dispatcher.done():
            self._inbox = asyncio.Queue()
            self._dispatcher = asyncio.create_task(
                self._dispatch_loop(self._inbox), name=f"{self.kind.value}-dispatcher"
            )

    def _reject(self, exc: DevicelinkError) -> bool:
        self.last_error = exc
        self.log(f"Connection error: {exc}", Severity.ERROR)
        return False

    # -- operations -------------------------------------------------------

    async def connect(self, config: ConnectConfig, *, selector: DeviceSelector | None = None) -> bool:
        """Select, open and start receiving. Returns True once connected."""
        if self._state not in (SessionState.DISCONNECTED, SessionState.ERROR):
            return self._reject(AlreadyOpenError(f"{self.kind.value} session is already {self._state.value}"))
        if any(retired.holds_handles() for retired in self._retired):
            return self._reject(AlreadyOpenError("Previous session is still releasing its handles"))

        self._ensure_dispatcher()
        inbox = self._inbox
        loop = asyncio.get_running_loop()
        session = TransportSession(
            self.kind, lambda session_id: SessionChannel(session_id, inbox, loop), self.log
        )
        self._session = session
        self.last_error = None
        self._transition(SessionState.CONNECTING)

        try:
            candidate = await self.driver.select(session, config, selector or self._selector)
            self._check_aborted(session)
            status = await self.driver.open(session, candidate, config)
            self._check_aborted(session)
            self._transition(SessionState.CONNECTED)
            self._status(True, status)
            await self.driver.start_receive(session)
            if self.driver.streaming:
                self._transition(SessionState.READING)
        except _ConnectAborted:
            await self._abort(session, None)
            return False
        except DevicelinkError as exc:
            await self._abort(session, exc)
            return False
        except asyncio.CancelledError:
            await self._abandon(session)
            raise
        except Exception as exc:
            LOGGER.exception("%s: unexpected error while connecting", self.kind.value)
            await self._abort(session, TransportIOError(f"Unexpected error: {type(exc).__name__}: {exc}"))
            return False
        return True

    async def _abandon(self, session: TransportSession) -> None:
        self._abort_errors.pop(session.session_id, None)
        if self._session is session or session.holds_handles():
            await self._teardown(session)
            self.log("Disconnected")
            self._status(False, "Not Connected")

    async def _abort(self, session: TransportSession, exc: DevicelinkError | None) -> None:
        error = self._abort_errors.pop(session.session_id, None)
        if error is None and not session.cancelled:
            error = exc
        if error is None:
            if exc is not None:
                LOGGER.debug("%s: error after cancel suppressed: %s", self.kind.value, exc)
            await self._teardown(session)
            self.log("Disconnected")
            self._status(False, "Not Connected")
            return
        await self._fail(session, error)

    def _check_aborted(self, session: TransportSession) -> None:
        if session.cancelled:
            raise _ConnectAborted()

    async def disconnect(self) -> None:
        """Tear down the live session, if any. Safe to call repeatedly."""
        session = self._session
        if session is None:
            LOGGER.debug("%s: disconnect with no live session", self.kind.value)
            return
        if self._state is SessionState.CONNECTING:
            # The connect path tears down once its pending step returns.
            session.cancelled = True
            return
        await self._teardown(session)
        self.log("Disconnected")
        self._status(False, "Not Connected")
        self._announce_authorized()

    async def send(
        self,
        payload: str | bytes,
        *,
        profile: DeviceProfile,
        is_hex: bool = False,
        target: str | None = None,
    ) -> bool:
        session = self._session
        if session is None or session.cancelled or self._state not in _LIVE:
            return self._report(TransportIOError("Not connected!"))
        if not payload:
            return self._report(ProtocolError("No data to send"))
        try:
            await self.driver.send(session, payload, is_hex=is_hex, profile=profile, target=target)
        except DevicelinkError as exc:
            if session.cancelled:
                LOGGER.debug("%s: send error after cancel suppressed: %s", self.kind.value, exc)
                return False
            return self._report(exc)
        return True

    def _report(self, exc: DevicelinkError) -> bool:
        self.last_error = exc
        self.log(str(exc), Severity.ERROR)
        return False

    async def _fail(self, session: TransportSession, exc: DevicelinkError) -> None:
        self.last_error = exc
        self._transition(SessionState.ERROR)
        self.log(f"Connection error: {exc}", Severity.ERROR)
        if isinstance(exc, AlreadyOpenError):
            self.log("Device may be in use. Try disconnecting first.", Severity.ERROR)
        self._status(False, f"Error: {exc}")
        await self._teardown(session)
        self._announce_authorized()

    async def _teardown(self, session: TransportSession) -> None:
        # Map invalidation, detach and the state change happen without yielding.
        session.cancelled = True
        session.characteristics.invalidate()
        if self._session is session:
            self._session = None
        if self._state is not SessionState.DISCONNECTED:
            self._transition(SessionState.DISCONNECTED)
        self._retired.append(session)
        try:
            await self.driver.close(session)
        except DevicelinkError as exc:
            self.log(f"Disconnect error: {exc}", Severity.ERROR)
        finally:
            self._retired.remove(session)

    # -- inbound events ---------------------------------------------------

    async def _dispatch_loop(self, inbox: asyncio.Queue[SessionMessage]) -> None:
        while True:
            message = await inbox.get()
            try:
                await self.dispatch(message)
            except DevicelinkError as exc:
                self.log(f"Event handling error: {exc}", Severity.ERROR)
            except Exception:
                LOGGER.exception("%s: failed to apply %s", self.kind.value, type(message.event).__name__)
            finally:
                inbox.task_done()

    async def dispatch(self, message: SessionMessage) -> None:
        session = self._session
        event = message.event
        if session is None or message.session_id != session.session_id:
            LOGGER.debug(
                "%s: dropping %s for stale session %s",
                self.kind.value,
                type(event).__name__,
                message.session_id,
            )
            return

        if isinstance(event, DataReceived):
            self.log(event.label, Severity.RX, event.data)
            if event.note:
                self.log(event.note)
            return

        if self._state is SessionState.CONNECTING:
            if isinstance(event, PeerDisconnected):
                self._abort_errors[session.session_id] = SpontaneousDisconnectError(
                    "Device disconnected during connect"
                )
            elif isinstance(event, ReceiveFailed):
                self._abort_errors[session.session_id] = event.error
            session.cancelled = True
            return

        if isinstance(event, PeerDisconnected):
            self.last_error = SpontaneousDisconnectError("Device disconnected")
            await self._teardown(session)
            self.log("Device disconnected")
            self._status(False, "Disconnected")
        elif isinstance(event, StreamEnded):
            await self._teardown(session)
            self.log("Device closed the stream")
            self._status(False, "Not Connected")
            self._announce_authorized()
        elif isinstance(event, ReceiveFailed):
            await self._fail(session, event.error)

    async def wait_idle(self) -> None:
        """Wait until every event posted so far has been applied."""
        await asyncio.sleep(0)
        if self._inbox is not None:
            await self._inbox.join()

    async def aclose(self) -> None:
        await self.disconnect()
        dispatcher = self._dispatcher
        self._dispatcher = None
        if dispatcher is not None:
            dispatcher.cancel()
            await asyncio.gather(dispatcher, return_exceptions=True)
