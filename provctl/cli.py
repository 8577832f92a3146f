"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import typer

from provctl.api import Client
from provctl.core.errors import OperatorCancelledError, ProvctlError, TransferFailedError
from provctl.core.model import DeviceDescriptor, EapType, EnterpriseCredentials, ProvisioningSession, SecurityClass
from provctl.core.provisioning import (
    EventLevel,
    InputKind,
    InputRequest,
    ManualNetwork,
    ProvisioningEvent,
    ProvisioningState,
    VerifyAction,
)
from provctl.transports.nmcli import NmcliWifi

app = typer.Typer(help="Flash firmware over DFU and provision Wi-Fi over SoftAP")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_client() -> Client:
    client = Client()
    client.transfer.confirm = lambda question: typer.confirm(question, default=True)
    for warning in client.load_warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return client


def _require_utility(client: Client) -> None:
    if not client.transfer.is_utility_installed():
        raise TransferFailedError("dfu-util is not installed. Install dfu-util and make sure it is on PATH.")


def _choose_device(candidates: Sequence[DeviceDescriptor]) -> DeviceDescriptor:
    for index, device in enumerate(candidates, start=1):
        typer.echo(f"  {index}) {device.product_name} [{device.dfu_id}]")
    index = typer.prompt("Which device would you like to select?", type=int, default=1)
    if not 1 <= index <= len(candidates):
        raise OperatorCancelledError(f"No device numbered {index}")
    return candidates[index - 1]


@app.command("devices")
def list_devices() -> None:
    """List connected devices in DFU mode that have a known spec."""
    try:
        client = _build_client()
        _require_utility(client)
        devices = client.transfer.list_devices()
        if not devices:
            typer.echo("No DFU devices found")
            return
        for device in devices:
            typer.echo(f"{device.dfu_id} {device.product_name}")
    except ProvctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("segments")
def list_segments(dfu_id: str | None = typer.Argument(None, help="DFU id such as 2b04:d006")) -> None:
    """List the addressable memory segments of known devices."""
    try:
        client = _build_client()
        specs = [client.registry.spec_for_device(dfu_id)] if dfu_id else client.registry.devices()
        for spec in specs:
            typer.echo(f"{spec.dfu_id}: {spec.product_name} (platform {spec.platform_id})")
            for name, segment in sorted(spec.segments.items()):
                size = f":{segment.size}" if segment.size else ""
                typer.echo(f"  {name}: {segment.address_hex}{size} alt={segment.alt} padding={segment.padding.value}")
    except ProvctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("read")
def read_segment(
    segment: str,
    destination: Path,
    leave: bool = typer.Option(False, "--leave", help="Exit DFU mode after the transfer"),
) -> None:
    """Read a memory segment from the device into DESTINATION."""
    try:
        client = _build_client()
        _require_utility(client)
        device = client.transfer.find_device(_choose_device)
        client.transfer.read(segment, destination, leave=leave)
        typer.echo(f"Read {segment} from {device.product_name} into {destination}")
    except ProvctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("write")
def write_segment(
    segment: str,
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    leave: bool = typer.Option(False, "--leave", help="Exit DFU mode after the transfer"),
) -> None:
    """Write SOURCE into a memory segment of the device."""
    try:
        client = _build_client()
        _require_utility(client)
        device = client.transfer.find_device(_choose_device)
        result = client.transfer.write(segment, source, leave=leave)
        typer.echo(f"Wrote {source} to {segment} on {device.product_name}")
        if result.overridden:
            typer.echo("Warning: dfu-util reported an error after a successful download", err=True)
    except ProvctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


class TyperOperator:
    """Operator interface answering provisioning prompts on the terminal."""

    def notify(self, event: ProvisioningEvent) -> None:
        if not event.message:
            return
        prefix = {EventLevel.INFO: ">", EventLevel.WARNING: "!", EventLevel.ERROR: "!!"}[event.level]
        typer.echo(f"{prefix} {event.message}", err=event.level is EventLevel.ERROR)

    async def ask(self, request: InputRequest) -> Any:
        try:
            return await asyncio.to_thread(self._ask, request)
        except typer.Abort as exc:
            raise OperatorCancelledError("Cancelled by operator") from exc

    def _ask(self, request: InputRequest) -> Any:
        kind = request.kind
        if kind in (
            InputKind.CONFIRM_INTERNET,
            InputKind.JOIN_DEVICE_NETWORK,
            InputKind.SCAN_CHOICE,
            InputKind.CONFIRM_SETTINGS,
            InputKind.RECONNECT_HOST,
        ):
            return typer.confirm(request.message, default=bool(request.default))
        if kind is InputKind.NETWORK_SELECTION:
            return self._pick(request.message, request.choices)
        if kind is InputKind.MANUAL_NETWORK:
            ssid = typer.prompt("Please enter the SSID of your Wi-Fi network", default="", show_default=False)
            security = self._pick("Please select the security used by your Wi-Fi network:", request.choices)
            return ManualNetwork(ssid=ssid, security=SecurityClass(security))
        if kind is InputKind.PASSWORD:
            return typer.prompt(request.message, default="", show_default=False, hide_input=True)
        if kind is InputKind.ENTERPRISE_CREDENTIALS:
            return self._enterprise(request.message)
        if kind is InputKind.VERIFY_ACTION:
            return VerifyAction(self._pick(request.message, request.choices))
        if kind is InputKind.DEVICE_NAME:
            return typer.prompt(request.message, default="", show_default=False)
        raise OperatorCancelledError(f"Unsupported prompt {kind.value}")

    @staticmethod
    def _pick(message: str, choices: Sequence[str]) -> str:
        typer.echo(message)
        for index, choice in enumerate(choices, start=1):
            typer.echo(f"  {index}) {choice}")
        index = typer.prompt("Choice", type=int, default=1)
        if not 1 <= index <= len(choices):
            return ""
        return choices[index - 1]

    def _enterprise(self, message: str) -> EnterpriseCredentials:
        typer.echo(message)
        eap = EapType(self._pick("EAP Type", [e.value for e in EapType]) or EapType.PEAP.value)
        username = password = certificate = private_key = None
        if eap is EapType.PEAP:
            username = typer.prompt("Username", default="", show_default=False)
            password = typer.prompt("Password", default="", show_default=False, hide_input=True)
        else:
            certificate = typer.edit("# Client certificate in PEM format\n") or ""
            private_key = typer.edit("# Private key in PEM format\n") or ""
        outer_identity = typer.prompt("Outer identity (optional)", default="", show_default=False)
        root_ca = None
        if typer.confirm("Would you like to provide CA certificate?", default=True):
            root_ca = typer.edit("# CA certificate in PEM format\n") or None
        return EnterpriseCredentials(
            eap=eap,
            username=username,
            password=password,
            client_certificate=certificate,
            private_key=private_key,
            outer_identity=outer_identity or None,
            root_ca=root_ca,
        )


@app.command("setup")
def setup(
    device_ap: str | None = typer.Option(None, "--device-ap", help="SSID of the device's setup network"),
    manual: bool = typer.Option(False, "--manual", help="Switch Wi-Fi networks by hand"),
) -> None:
    """Provision Wi-Fi credentials on a device in listening mode."""
    try:
        client = _build_client()
        session = ProvisioningSession(device_ap=device_ap, manual=manual)
        orchestrator = client.provisioner(TyperOperator(), session=session, host_wifi=NmcliWifi())
        state = asyncio.run(orchestrator.run())
    except ProvctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if state is ProvisioningState.FAILED:
        raise typer.Exit(code=1)
    if state is ProvisioningState.CANCELLED:
        typer.echo("Ok, bye! Run setup again when you're ready.")
        raise typer.Exit(code=1)
    typer.echo("Congratulations! Your device is online.")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
