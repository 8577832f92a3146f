"""Host Wi-Fi control through NetworkManager's nmcli."""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
from collections.abc import Callable, Iterable, Sequence

from provctl.core.errors import ProvisioningError

LOGGER = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str]], subprocess.CompletedProcess[str]]


def _default_runner(cmd: Sequence[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(cmd, check=False, capture_output=True, text=True)


def _format_command(cmd: Sequence[str], redactions: Iterable[int] = ()) -> str:
    hidden = set(redactions)
    return " ".join("******" if index in hidden else part for index, part in enumerate(cmd))


def _split_terse(line: str) -> list[str]:
    """Split an `nmcli -t` line on unescaped colons and unescape the fields."""
    fields: list[str] = []
    current: list[str] = []
    index = 0
    while index < len(line):
        char = line[index]
        if char == "\\" and index + 1 < len(line):
            current.append(line[index + 1])
            index += 2
            continue
        if char == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
        index += 1
    fields.append("".join(current))
    return fields


class NmcliWifi:
    def __init__(self, *, runner: CommandRunner | None = None, executable: str = "nmcli") -> None:
        self.executable = executable
        self._runner = runner

    @property
    def supports_connect(self) -> bool:
        return self._runner is not None or shutil.which(self.executable) is not None

    async def current_network(self) -> str | None:
        result = await self._run([self.executable, "-t", "-f", "ACTIVE,SSID", "dev", "wifi"])
        if result.returncode != 0:
            return None
        for line in result.stdout.splitlines():
            fields = _split_terse(line)
            if len(fields) >= 2 and fields[0] == "yes" and fields[1]:
                return fields[1]
        return None

    async def connect(self, ssid: str, password: str | None = None) -> None:
        cmd = [self.executable, "dev", "wifi", "connect", ssid]
        redactions: list[int] = []
        if password:
            cmd.extend(["password", password])
            redactions.append(len(cmd) - 1)
        result = await self._run(cmd, redactions)
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise ProvisioningError(f"Could not connect to '{ssid}': {detail}")

    async def _run(self, cmd: Sequence[str], redactions: Iterable[int] = ()) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running command: %s", _format_command(cmd, redactions))
        runner = self._runner or _default_runner
        try:
            result = await asyncio.to_thread(runner, cmd)
        except FileNotFoundError as exc:
            raise ProvisioningError(f"{self.executable} is not installed") from exc
        LOGGER.debug("Command completed with return code %s", result.returncode)
        return result
