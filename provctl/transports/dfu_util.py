"""dfu-util transfer utility invoked through subprocess."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence

from provctl.core.errors import TransferFailedError, TransferTimeoutError
from provctl.core.model import UtilityResult

LOGGER = logging.getLogger(__name__)


class DfuUtil:
    def __init__(self, executable: str = "dfu-util", *, use_sudo: bool = False) -> None:
        self.executable = executable
        self.use_sudo = use_sudo

    def command(self, args: Sequence[str]) -> list[str]:
        prefix = ["sudo", self.executable] if self.use_sudo else [self.executable]
        return [*prefix, *args]

    def run(self, args: Sequence[str], *, timeout_s: float | None = None) -> UtilityResult:
        cmd = self.command(args)
        LOGGER.debug("Running %s", " ".join(cmd))
        try:
            completed = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=timeout_s,
            )
        except subprocess.TimeoutExpired as exc:
            raise TransferTimeoutError(
                f"{self.executable} did not finish within {timeout_s:g}s"
            ) from exc
        except FileNotFoundError as exc:
            raise TransferFailedError(
                f"{self.executable} is not installed. Install dfu-util and make sure it is on PATH."
            ) from exc

        LOGGER.debug("%s exited with %s", self.executable, completed.returncode)
        return UtilityResult(
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
