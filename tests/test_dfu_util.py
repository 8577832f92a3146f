from __future__ import annotations

import subprocess
from typing import Any

import pytest

from provctl.core.errors import TransferFailedError, TransferTimeoutError
from provctl.transports.dfu_util import DfuUtil


def test_run_maps_completed_process(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, Any] = {}

    def fake_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        seen["cmd"] = cmd
        seen.update(kwargs)
        return subprocess.CompletedProcess(cmd, 0, "Found DFU: [2b04:d006]\n", None)

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = DfuUtil().run(["-l"], timeout_s=6.0)

    assert seen["cmd"] == ["dfu-util", "-l"]
    assert seen["timeout"] == 6.0
    assert seen["check"] is False
    assert result.returncode == 0
    assert result.stderr == ""
    assert "2b04:d006" in result.output


def test_sudo_prefix() -> None:
    assert DfuUtil(use_sudo=True).command(["-l"]) == ["sudo", "dfu-util", "-l"]
    assert DfuUtil("/opt/dfu-util").command(["-l"]) == ["/opt/dfu-util", "-l"]


def test_timeout_raises_transfer_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(TransferTimeoutError, match="6s"):
        DfuUtil().run(["-l"], timeout_s=6.0)


def test_missing_executable_raises_clean_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(TransferFailedError, match="not installed"):
        DfuUtil().run(["-l"])
