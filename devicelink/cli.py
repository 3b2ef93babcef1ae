"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Sequence
from dataclasses import replace

import typer

from devicelink.core.errors import DevicelinkError
from devicelink.core.model import (
    BluetoothConfig,
    ConnectConfig,
    DeviceCandidate,
    HIDConfig,
    RenderedEntry,
    ReportIdPolicy,
    SerialConfig,
    StatusChange,
    TransportKind,
    ViewMode,
)
from devicelink.core.profiles import DEFAULT_PROFILE_ID
from devicelink.core.selection import DeviceSelector, hinted_selector
from devicelink.core.service import DeviceService

app = typer.Typer(help="Talk to serial, HID and Bluetooth LE peripherals from one terminal")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


def _build_service(profile_id: str = DEFAULT_PROFILE_ID) -> DeviceService:
    service = DeviceService(profile_id=profile_id)
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _build_config(
    kind: TransportKind,
    *,
    port: str | None = None,
    baud: int = 115200,
    path: str | None = None,
    report_id: ReportIdPolicy = ReportIdPolicy.LEADING_BYTE,
    address: str | None = None,
    service_uuid: str | None = None,
    timeout: float = 5.0,
) -> ConnectConfig:
    if kind is TransportKind.SERIAL:
        return SerialConfig(port=port, baudrate=baud)
    if kind is TransportKind.HID:
        return HIDConfig(path=path.encode("utf-8") if path else None, report_id_policy=report_id)
    return BluetoothConfig(address=address, service_uuid=service_uuid, scan_timeout=timeout)


async def _prompt_choice(kind: TransportKind, candidates: Sequence[DeviceCandidate]) -> DeviceCandidate | None:
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]
    for index, candidate in enumerate(candidates, start=1):
        detail = f" [{candidate.detail}]" if candidate.detail else ""
        typer.echo(f"  {index}) {candidate.id} {candidate.name}{detail}")
    try:
        answer = await asyncio.to_thread(
            typer.prompt, f"Select {kind.value} device", default="", show_default=False
        )
    except typer.Abort:
        return None
    answer = answer.strip()
    if not answer.isdigit() or not 1 <= int(answer) <= len(candidates):
        return None
    return candidates[int(answer) - 1]


def _selector(device: str | None) -> DeviceSelector:
    return hinted_selector(device, fallback=_prompt_choice)


def _echo_entry(rendered: RenderedEntry) -> None:
    typer.echo(rendered.text)


def _echo_status(change: StatusChange) -> None:
    suffix = " (reconnect available)" if change.reconnect_available else ""
    typer.echo(f"Status: {change.message}{suffix}", err=True)


@app.command("profiles")
def list_profiles() -> None:
    """List device profiles and their quick commands."""
    try:
        service = _build_service()
        profiles = service.registry.list()
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            ending = profile.line_ending.encode("unicode_escape").decode("ascii") or "<none>"
            typer.echo(f"{profile.id}: {profile.name} (line ending: {ending})")
            for command in profile.commands:
                kind = "hex" if command.is_hex else "text"
                typer.echo(f"  {command.label} [{kind}]")
    except DevicelinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("devices")
def list_devices(
    kind: TransportKind = typer.Argument(..., help="serial, hid or bluetooth"),
    service_uuid: str | None = typer.Option(None, "--service", help="BLE service UUID filter"),
    timeout: float = typer.Option(5.0, "--timeout", help="BLE scan duration in seconds"),
) -> None:
    """List devices that can be picked for a transport."""
    try:
        service = _build_service()
        config = _build_config(kind, service_uuid=service_uuid, timeout=timeout)
        devices = asyncio.run(service.list_devices(kind, config))
        if not devices:
            typer.echo(f"No {kind.value} devices found")
            return

        for device in devices:
            detail = f" [{device.detail}]" if device.detail else ""
            typer.echo(f"{device.id} {device.name}{detail}")
    except DevicelinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


async def _run_send(
    service: DeviceService,
    kind: TransportKind,
    config: ConnectConfig,
    payload: str,
    *,
    is_hex: bool,
    char: str | None,
    view: ViewMode | None,
    listen: float,
    device: str | None,
) -> bool:
    service.subscribe_log(_echo_entry)
    service.subscribe_status(_echo_status)
    if view is not None:
        service.set_view_mode(kind, view)
    try:
        if not await service.connect(kind, config, selector=_selector(device)):
            return False
        sent = await service.send(kind, payload, is_hex, target=char)
        if sent and listen > 0:
            await asyncio.sleep(listen)
        return sent
    finally:
        await service.aclose()


@app.command("send")
def send(
    kind: TransportKind = typer.Argument(..., help="serial, hid or bluetooth"),
    payload: str = typer.Argument(..., help="Text, or hex bytes with --hex (HID always takes hex)"),
    is_hex: bool = typer.Option(False, "--hex", help="Payload is hex bytes, sent without line ending"),
    profile: str = typer.Option(DEFAULT_PROFILE_ID, "--profile", help="Device profile id"),
    device: str | None = typer.Option(None, "--device", help="Device id or partial name"),
    port: str | None = typer.Option(None, "--port", help="Serial port"),
    baud: int = typer.Option(115200, "--baud", help="Serial baud rate"),
    path: str | None = typer.Option(None, "--path", help="HID device path"),
    report_id: ReportIdPolicy = typer.Option(ReportIdPolicy.LEADING_BYTE, "--report-id", help="HID report id policy"),
    address: str | None = typer.Option(None, "--address", help="BLE device address"),
    service_uuid: str | None = typer.Option(None, "--service", help="BLE service UUID filter"),
    char: str | None = typer.Option(None, "--char", help="BLE characteristic UUID to write"),
    view: ViewMode | None = typer.Option(None, "--view", help="text, hex or both"),
    listen: float = typer.Option(1.0, "--listen", help="Seconds to keep receiving after the send"),
) -> None:
    """Connect, send one payload, print what comes back, then disconnect."""
    try:
        service = _build_service(profile)
        config = _build_config(
            kind,
            port=port,
            baud=baud,
            path=path,
            report_id=report_id,
            address=address,
            service_uuid=service_uuid,
        )
        ok = asyncio.run(
            _run_send(
                service,
                kind,
                config,
                payload,
                is_hex=is_hex,
                char=char,
                view=view,
                listen=listen,
                device=device,
            )
        )
    except DevicelinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    if not ok:
        raise typer.Exit(code=1)


async def _handle_line(
    service: DeviceService,
    kind: TransportKind,
    line: str,
    *,
    is_hex: bool,
    char: str | None,
    config: ConnectConfig,
) -> bool:
    """Apply one monitor input line. Returns False when the session should end."""
    if line == "/quit":
        return False
    if line == "/clear":
        service.clear_log(kind)
    elif line == "/reconnect" and isinstance(config, SerialConfig):
        await service.disconnect(kind)
        await service.connect(kind, replace(config, reconnect=True))
    elif line.startswith("/view "):
        service.set_view_mode(kind, line.split(maxsplit=1)[1])
    elif line.startswith("/profile "):
        profile = service.select_profile(line.split(maxsplit=1)[1])
        typer.echo(f"Profile: {profile.name}")
    elif line.startswith("/quick "):
        await service.send_quick(kind, line.split(maxsplit=1)[1], target=char)
    elif line == "/quick":
        labels = ", ".join(c.label for c in service.quick_commands()) or "<none>"
        typer.echo(f"Quick commands: {labels}")
    else:
        await service.send(kind, line, is_hex, target=char)
    return True


async def _run_monitor(
    service: DeviceService,
    kind: TransportKind,
    config: ConnectConfig,
    *,
    is_hex: bool,
    char: str | None,
    view: ViewMode | None,
    device: str | None,
) -> bool:
    service.subscribe_log(_echo_entry)
    service.subscribe_status(_echo_status)
    if view is not None:
        service.set_view_mode(kind, view)
    try:
        if not await service.connect(kind, config, selector=_selector(device)):
            return False
        typer.echo("Type a line to send; /quick, /view MODE, /profile ID, /reconnect, /clear, /quit", err=True)
        while True:
            raw = await asyncio.to_thread(sys.stdin.readline)
            if not raw:
                break
            line = raw.rstrip("\r\n")
            if not line:
                continue
            try:
                if not await _handle_line(service, kind, line, is_hex=is_hex, char=char, config=config):
                    break
            except (DevicelinkError, ValueError) as exc:
                typer.echo(f"Error: {exc}", err=True)
        return True
    finally:
        await service.aclose()


@app.command("monitor")
def monitor(
    kind: TransportKind = typer.Argument(..., help="serial, hid or bluetooth"),
    is_hex: bool = typer.Option(False, "--hex", help="Input lines are hex bytes"),
    profile: str = typer.Option(DEFAULT_PROFILE_ID, "--profile", help="Device profile id"),
    device: str | None = typer.Option(None, "--device", help="Device id or partial name"),
    port: str | None = typer.Option(None, "--port", help="Serial port"),
    baud: int = typer.Option(115200, "--baud", help="Serial baud rate"),
    path: str | None = typer.Option(None, "--path", help="HID device path"),
    report_id: ReportIdPolicy = typer.Option(ReportIdPolicy.LEADING_BYTE, "--report-id", help="HID report id policy"),
    address: str | None = typer.Option(None, "--address", help="BLE device address"),
    service_uuid: str | None = typer.Option(None, "--service", help="BLE service UUID filter"),
    char: str | None = typer.Option(None, "--char", help="BLE characteristic UUID to write"),
    view: ViewMode | None = typer.Option(None, "--view", help="text, hex or both"),
) -> None:
    """Open an interactive terminal on one device."""
    try:
        service = _build_service(profile)
        config = _build_config(
            kind,
            port=port,
            baud=baud,
            path=path,
            report_id=report_id,
            address=address,
            service_uuid=service_uuid,
        )
        ok = asyncio.run(
            _run_monitor(service, kind, config, is_hex=is_hex, char=char, view=view, device=device)
        )
    except DevicelinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    if not ok:
        raise typer.Exit(code=1)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
