"""UDEV rules install for non-root DFU access on Linux.

UDEV rules let regular users open devices that otherwise need superuser
permissions. Installing them is a one-time, operator-confirmed step.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from importlib import resources
from pathlib import Path

from provctl.core.errors import PermissionDeniedError

RULES_DIR = Path("/etc/udev/rules.d")
RULES_FILE = "50-particle.rules"
RECONNECT_HINT = "Physically unplug and reconnect the device and try again."
LOGGER = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str]], subprocess.CompletedProcess[str]]


def _default_runner(cmd: Sequence[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(cmd, check=False, capture_output=True, text=True)


class UdevRules:
    def __init__(
        self,
        rules_dir: Path = RULES_DIR,
        *,
        runner: CommandRunner | None = None,
    ) -> None:
        self.rules_dir = rules_dir
        self._runner = runner or _default_runner

    @property
    def supported(self) -> bool:
        return self.rules_dir.is_dir()

    @property
    def installed(self) -> bool:
        return (self.rules_dir / RULES_FILE).exists()

    def install(self) -> None:
        source = resources.files("provctl.rules").joinpath(RULES_FILE)
        with resources.as_file(source) as rules_path:
            cmd = ["sudo", "cp", str(rules_path), f"{self.rules_dir}/"]
            LOGGER.info("Installing udev rules: %s", " ".join(cmd))
            result = self._runner(cmd)
        if result.returncode != 0:
            detail = (result.stderr or "").strip()
            raise PermissionDeniedError(f"Could not install UDEV rules. {detail}".strip())

    def recover(self, confirm: Callable[[str], bool] | None) -> PermissionDeniedError:
        """Offer the rules install and return the error the caller should raise.

        Access is only restored after the device is replugged, so every path ends
        in PermissionDeniedError carrying the operator guidance.
        """
        if not self.supported:
            return PermissionDeniedError(f"Missing permissions to use DFU. {RECONNECT_HINT}")
        if self.installed:
            return PermissionDeniedError(f"Missing permissions to use DFU. {RECONNECT_HINT}")

        question = (
            "You are missing the permissions to use DFU without root. "
            "Would you like to install a UDEV rules file to get access?"
        )
        if confirm is None or not confirm(question):
            return PermissionDeniedError(
                "Missing permissions to use DFU. Install the UDEV rules or run with sudo."
            )

        try:
            self.install()
        except PermissionDeniedError as exc:
            return exc
        return PermissionDeniedError(
            "UDEV rules for DFU installed. Physically unplug and reconnect the device, "
            "then run the command again."
        )
