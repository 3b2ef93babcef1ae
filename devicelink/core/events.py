"""Append-only log sink and status fan-out consumed by front ends."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from devicelink.core.codec import render_line
from devicelink.core.model import (
    LogEntry,
    RenderedEntry,
    Severity,
    StatusChange,
    TransportKind,
    ViewMode,
)

LOGGER = logging.getLogger(__name__)

_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.ERROR: logging.ERROR,
    Severity.RX: logging.DEBUG,
    Severity.TX: logging.DEBUG,
}

LogCallback = Callable[[RenderedEntry], None]
StatusCallback = Callable[[StatusChange], None]


def make_entry(
    kind: TransportKind,
    message: str,
    severity: Severity = Severity.INFO,
    raw_bytes: bytes | None = None,
) -> LogEntry:
    return LogEntry(
        timestamp=datetime.now(),
        kind=kind,
        severity=severity,
        message=message,
        raw_bytes=bytes(raw_bytes) if raw_bytes is not None else None,
    )


class EventSink:
    """Stores rendered log entries per transport kind and notifies subscribers.

    Rendering is fixed at append time with the view mode the caller passes in;
    changing the view mode later does not touch entries already stored.
    """

    def __init__(self) -> None:
        self._entries: dict[TransportKind, list[RenderedEntry]] = {kind: [] for kind in TransportKind}
        self._log_subscribers: list[LogCallback] = []
        self._status_subscribers: list[StatusCallback] = []
        self._last_status: dict[TransportKind, StatusChange] = {}

    def append(self, entry: LogEntry, view_mode: ViewMode) -> RenderedEntry:
        rendered = RenderedEntry(entry=entry, view_mode=view_mode, text=render_line(entry, view_mode))
        self._entries[entry.kind].append(rendered)
        LOGGER.log(_LEVELS[entry.severity], "[%s] %s", entry.kind.value, entry.message)
        for callback in list(self._log_subscribers):
            callback(rendered)
        return rendered

    def log(
        self,
        kind: TransportKind,
        message: str,
        severity: Severity = Severity.INFO,
        raw_bytes: bytes | None = None,
        *,
        view_mode: ViewMode = ViewMode.TEXT,
    ) -> RenderedEntry:
        return self.append(make_entry(kind, message, severity, raw_bytes), view_mode)

    def set_status(self, change: StatusChange) -> None:
        self._last_status[change.kind] = change
        for callback in list(self._status_subscribers):
            callback(change)

    def status(self, kind: TransportKind) -> StatusChange | None:
        return self._last_status.get(kind)

    def entries(self, kind: TransportKind) -> tuple[RenderedEntry, ...]:
        return tuple(self._entries[kind])

    def lines(self, kind: TransportKind) -> list[str]:
        return [rendered.text for rendered in self._entries[kind]]

    def clear(self, kind: TransportKind) -> None:
        self._entries[kind] = []
        self.log(kind, "Terminal cleared")

    def subscribe(self, callback: LogCallback) -> Callable[[], None]:
        self._log_subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._log_subscribers:
                self._log_subscribers.remove(callback)

        return unsubscribe

    def subscribe_status(self, callback: StatusCallback) -> Callable[[], None]:
        self._status_subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._status_subscribers:
                self._status_subscribers.remove(callback)

        return unsubscribe
