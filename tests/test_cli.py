from __future__ import annotations

import asyncio
import threading
from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from provctl import cli
from provctl.core.errors import NoDeviceFoundError, OperatorCancelledError
from provctl.core.model import (
    DeviceDescriptor,
    DeviceSpec,
    Padding,
    SegmentSpec,
    TransferDirection,
    TransferRequest,
    TransferResult,
)
from provctl.core.provisioning import EventLevel, InputKind, InputRequest, ProvisioningEvent, ProvisioningState
from provctl.core.spec_registry import SegmentSpecRegistry

PHOTON = DeviceSpec(
    dfu_id="2b04:d006",
    product_name="Photon",
    platform_id=6,
    segments={
        "user-firmware": SegmentSpec("user-firmware", 0x080A0000, 0, padding=Padding.EVEN),
        "server-key": SegmentSpec("server-key", 0x1000, 1, size=2048),
    },
)
DEVICE = DeviceDescriptor(dfu_id=PHOTON.dfu_id, product_name=PHOTON.product_name, spec=PHOTON)


class FakeEngine:
    def __init__(self, *, overridden: bool = False, fail: bool = False, installed: bool = True) -> None:
        self.overridden = overridden
        self.fail = fail
        self.installed = installed
        self.confirm = None
        self.transfers: list[tuple[str, str, Path, bool]] = []

    def is_utility_installed(self) -> bool:
        return self.installed

    def list_devices(self):
        return [DEVICE]

    def find_device(self, choose=None):
        if self.fail:
            raise NoDeviceFoundError("No device in DFU mode was detected.")
        return DEVICE

    def read(self, segment, destination, leave=False):
        self.transfers.append(("read", segment, Path(destination), leave))
        request = TransferRequest(TransferDirection.UPLOAD, segment, Path(destination), leave)
        return TransferResult(request=request, output="")

    def write(self, segment, source, leave=False):
        self.transfers.append(("write", segment, Path(source), leave))
        request = TransferRequest(TransferDirection.DOWNLOAD, segment, Path(source), leave)
        return TransferResult(request=request, output="", overridden=self.overridden)


class FakeOrchestrator:
    def __init__(self, state: ProvisioningState) -> None:
        self.state = state

    async def run(self) -> ProvisioningState:
        return self.state


class FakeClient:
    engine = FakeEngine()
    final_state = ProvisioningState.DONE
    sessions: list = []

    def __init__(self) -> None:
        self.registry = SegmentSpecRegistry({PHOTON.dfu_id: PHOTON})
        self.transfer = FakeClient.engine
        self.load_warnings = ("User spec '2b04:d006' overrides packaged spec",)

    def provisioner(self, operator, *, session=None, host_wifi=None):
        FakeClient.sessions.append(session)
        return FakeOrchestrator(FakeClient.final_state)


runner = CliRunner()


@pytest.fixture(autouse=True)
def fake_client(monkeypatch: pytest.MonkeyPatch) -> None:
    FakeClient.engine = FakeEngine()
    FakeClient.final_state = ProvisioningState.DONE
    FakeClient.sessions = []
    monkeypatch.setattr(cli, "Client", FakeClient)


def test_devices_command() -> None:
    result = runner.invoke(cli.app, ["devices"])
    assert result.exit_code == 0
    assert "2b04:d006 Photon" in result.stdout
    assert "overrides packaged spec" in result.output


def test_segments_command() -> None:
    result = runner.invoke(cli.app, ["segments", "2b04:d006"])
    assert result.exit_code == 0
    assert "2b04:d006: Photon (platform 6)" in result.stdout
    assert "user-firmware: 0x080A0000 alt=0 padding=even" in result.stdout
    assert "server-key: 0x00001000:2048 alt=1 padding=none" in result.stdout


def test_segments_unknown_device_fails() -> None:
    result = runner.invoke(cli.app, ["segments", "dead:beef"])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_write_command(tmp_path: Path) -> None:
    source = tmp_path / "app.bin"
    source.write_bytes(b"\x01" * 101)

    result = runner.invoke(cli.app, ["write", "user-firmware", str(source), "--leave"])

    assert result.exit_code == 0
    assert "Wrote" in result.stdout and "on Photon" in result.stdout
    assert FakeClient.engine.transfers == [("write", "user-firmware", source, True)]
    assert FakeClient.engine.confirm is not None


def test_write_command_reports_override(tmp_path: Path) -> None:
    FakeClient.engine = FakeEngine(overridden=True)
    source = tmp_path / "app.bin"
    source.write_bytes(b"\x01\x02")

    result = runner.invoke(cli.app, ["write", "user-firmware", str(source)])

    assert result.exit_code == 0
    assert "after a successful download" in result.output


def test_read_command_without_device_fails(tmp_path: Path) -> None:
    FakeClient.engine = FakeEngine(fail=True)
    result = runner.invoke(cli.app, ["read", "server-key", str(tmp_path / "server.der")])
    assert result.exit_code == 1
    assert "No device in DFU mode" in result.output


def test_dfu_commands_require_installed_utility(tmp_path: Path) -> None:
    FakeClient.engine = FakeEngine(installed=False)
    source = tmp_path / "app.bin"
    source.write_bytes(b"\x01\x02")

    for args in (["devices"], ["read", "server-key", str(tmp_path / "server.der")], ["write", "user-firmware", str(source)]):
        result = runner.invoke(cli.app, args)
        assert result.exit_code == 1
        assert "dfu-util is not installed" in result.output

    assert FakeClient.engine.transfers == []


def test_setup_command_success() -> None:
    result = runner.invoke(cli.app, ["setup", "--device-ap", "Photon-ABCD", "--manual"])
    assert result.exit_code == 0
    assert "Congratulations" in result.stdout
    session = FakeClient.sessions[0]
    assert session.device_ap == "Photon-ABCD"
    assert session.manual is True


def test_setup_command_cancelled() -> None:
    FakeClient.final_state = ProvisioningState.CANCELLED
    result = runner.invoke(cli.app, ["setup"])
    assert result.exit_code == 1
    assert "Run setup again" in result.stdout


def test_operator_maps_abort_to_cancel(monkeypatch: pytest.MonkeyPatch) -> None:
    def abort(*args, **kwargs):
        raise typer.Abort()

    monkeypatch.setattr(typer, "confirm", abort)
    request = InputRequest(kind=InputKind.CONFIRM_SETTINGS, message="Continue?", default=True)

    with pytest.raises(OperatorCancelledError):
        asyncio.run(cli.TyperOperator().ask(request))


def test_operator_answers_confirm_and_password(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(typer, "confirm", lambda *args, **kwargs: False)
    monkeypatch.setattr(typer, "prompt", lambda *args, **kwargs: "secret123")
    operator = cli.TyperOperator()

    assert asyncio.run(operator.ask(InputRequest(InputKind.RECONNECT_HOST, "Reconnected?"))) is False
    assert asyncio.run(operator.ask(InputRequest(InputKind.PASSWORD, "Password"))) == "secret123"


def test_operator_notify_levels(capsys: pytest.CaptureFixture[str]) -> None:
    operator = cli.TyperOperator()
    operator.notify(ProvisioningEvent(ProvisioningState.VERIFYING_CLOUD, "Retrying", EventLevel.WARNING))
    operator.notify(ProvisioningEvent(ProvisioningState.FAILED, "Boom", EventLevel.ERROR))
    operator.notify(ProvisioningEvent(ProvisioningState.NAMED, ""))

    captured = capsys.readouterr()
    assert captured.out == "! Retrying\n"
    assert captured.err == "!! Boom\n"


def test_operator_prompts_run_off_the_event_loop_thread(monkeypatch: pytest.MonkeyPatch) -> None:
    prompt_threads: list[int] = []

    def confirm(*args, **kwargs):
        prompt_threads.append(threading.get_ident())
        return True

    monkeypatch.setattr(typer, "confirm", confirm)

    async def scenario() -> tuple[bool, int]:
        answer = await cli.TyperOperator().ask(InputRequest(InputKind.CONFIRM_INTERNET, "Online?"))
        return answer, threading.get_ident()

    answer, loop_thread = asyncio.run(scenario())

    assert answer is True
    assert prompt_threads and prompt_threads[0] != loop_thread
