"""Segment-addressed DFU read/write engine."""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from provctl.core.device_match import known_dfu_ids, missing_device_permissions
from provctl.core.errors import NoDeviceFoundError, TransferFailedError, TransferTimeoutError
from provctl.core.model import (
    DeviceDescriptor,
    Padding,
    SegmentSpec,
    TransferDirection,
    TransferRequest,
    TransferResult,
)
from provctl.core.spec_registry import SegmentSpecRegistry
from provctl.core.udev import UdevRules
from provctl.transports.base import TransferUtility

SUCCESS_MARKER = "File downloaded successfully"
DEFAULT_LIST_TIMEOUT_S = 6.0
DFU_MODE_HELP = (
    "No device in DFU mode was detected. Your device blinks yellow when in DFU mode. "
    "If it is not blinking yellow: 1) press and hold both RESET/RST and MODE/SETUP, "
    "2) release only RESET/RST while holding MODE/SETUP, "
    "3) release MODE/SETUP once the device begins to blink yellow."
)
LOGGER = logging.getLogger(__name__)

Chooser = Callable[[Sequence[DeviceDescriptor]], DeviceDescriptor]
Confirm = Callable[[str], bool]


def pad_to_even(data: bytes) -> bytes:
    """Append a single zero byte to odd-length data; even-length data is returned as is."""
    if len(data) % 2:
        return data + b"\x00"
    return data


class DeviceTransferEngine:
    def __init__(
        self,
        registry: SegmentSpecRegistry,
        utility: TransferUtility,
        *,
        list_timeout_s: float = DEFAULT_LIST_TIMEOUT_S,
        udev: UdevRules | None = None,
        confirm: Confirm | None = None,
    ) -> None:
        self.registry = registry
        self.utility = utility
        self.list_timeout_s = list_timeout_s
        self.udev = udev or UdevRules()
        self.confirm = confirm
        self.dfu_id: str | None = None

    def is_utility_installed(self) -> bool:
        """Report whether the transfer utility can be started at all.

        A nonzero exit or a listing that runs past its deadline still means the
        utility is present.
        """
        try:
            self.utility.run(["-l"], timeout_s=self.list_timeout_s)
        except TransferTimeoutError:
            return True
        except TransferFailedError:
            return False
        return True

    def list_devices(self, timeout_s: float | None = None) -> list[DeviceDescriptor]:
        result = self.utility.run(["-l"], timeout_s=timeout_s or self.list_timeout_s)

        if missing_device_permissions(result.stderr):
            raise self.udev.recover(self.confirm)
        if result.returncode != 0:
            raise TransferFailedError(result.stderr.strip() or result.output.strip())

        devices: list[DeviceDescriptor] = []
        for dfu_id in known_dfu_ids(result.stdout, self.registry):
            spec = self.registry.spec_for_device(dfu_id)
            devices.append(DeviceDescriptor(dfu_id=dfu_id, product_name=spec.product_name, spec=spec))
        return devices

    def select_device(
        self,
        candidates: Sequence[DeviceDescriptor],
        choose: Chooser | None = None,
    ) -> DeviceDescriptor:
        if not candidates:
            raise NoDeviceFoundError(DFU_MODE_HELP)

        if len(candidates) == 1:
            selected = candidates[0]
            LOGGER.debug("Found DFU device %s", selected.dfu_id)
        elif choose is None:
            candidate_desc = ", ".join(f"{c.dfu_id} ({c.product_name})" for c in candidates)
            raise NoDeviceFoundError(
                f"Multiple DFU devices found: {candidate_desc}. Choose one explicitly."
            )
        else:
            selected = choose(candidates)

        self.dfu_id = selected.dfu_id
        return selected

    def find_device(self, choose: Chooser | None = None) -> DeviceDescriptor:
        return self.select_device(self.list_devices(), choose)

    def read(self, segment: str, destination: str | os.PathLike[str], leave: bool = False) -> TransferResult:
        segment_spec = self._segment(segment)
        request = TransferRequest(
            direction=TransferDirection.UPLOAD,
            segment=segment,
            path=Path(destination),
            leave=leave,
        )
        return self._transfer(request, segment_spec, with_size=True)

    def write(self, segment: str, source: str | os.PathLike[str], leave: bool = False) -> TransferResult:
        segment_spec = self._segment(segment)
        source_path = Path(source)
        if segment_spec.padding is Padding.EVEN and source_path.stat().st_size % 2:
            # The operator's file is left untouched; the padded copy is staged instead.
            padded = pad_to_even(source_path.read_bytes())
            with _staged_file(padded) as staged:
                return self._write_path(segment, segment_spec, staged, leave)
        return self._write_path(segment, segment_spec, source_path, leave)

    def read_buffer(self, segment: str, leave: bool = False) -> bytes:
        with _staged_file() as staged:
            self.read(segment, staged, leave)
            return staged.read_bytes()

    def write_buffer(self, segment: str, data: bytes, leave: bool = False) -> TransferResult:
        segment_spec = self._segment(segment)
        if segment_spec.padding is Padding.EVEN:
            data = pad_to_even(data)
        with _staged_file(data) as staged:
            return self._write_path(segment, segment_spec, staged, leave)

    def _segment(self, segment: str) -> SegmentSpec:
        if self.dfu_id is None:
            raise NoDeviceFoundError("No DFU device selected. " + DFU_MODE_HELP)
        return self.registry.spec_for_segment(self.dfu_id, segment)

    def _write_path(
        self,
        segment: str,
        segment_spec: SegmentSpec,
        path: Path,
        leave: bool,
    ) -> TransferResult:
        request = TransferRequest(
            direction=TransferDirection.DOWNLOAD,
            segment=segment,
            path=path,
            leave=leave,
        )
        return self._transfer(request, segment_spec, with_size=False)

    def _transfer(
        self,
        request: TransferRequest,
        segment_spec: SegmentSpec,
        *,
        with_size: bool,
    ) -> TransferResult:
        address = segment_spec.address_hex
        if with_size and segment_spec.size:
            address = f"{address}:{segment_spec.size}"
        if request.leave:
            address = f"{address}:leave"

        args = [
            "-d", self.dfu_id or "",
            "-a", str(segment_spec.alt),
            "-i", "0",
            "-s", address,
            request.direction.flag, str(request.path),
        ]
        # Transfers are unbounded: large images can take minutes.
        result = self.utility.run(args)
        output = result.output

        if result.returncode == 0:
            return TransferResult(request=request, output=output)

        if SUCCESS_MARKER in output:
            # dfu-util exits nonzero after a successful download on some devices.
            LOGGER.warning(
                "dfu-util exited with %s but reported '%s'; treating %s of %s as successful",
                result.returncode,
                SUCCESS_MARKER,
                request.direction.value,
                request.segment,
            )
            return TransferResult(request=request, output=output, overridden=True)

        raise TransferFailedError(result.stderr.strip() or output.strip())


@contextmanager
def _staged_file(data: bytes | None = None) -> Iterator[Path]:
    # dfu-util will not upload into an existing file, so each call gets a
    # fresh name inside its own private directory.
    directory = Path(tempfile.mkdtemp(prefix="provctl-"))
    path = directory / "segment.bin"
    try:
        if data is not None:
            path.write_bytes(data)
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
            directory.rmdir()
        except OSError as exc:
            LOGGER.warning("Could not remove temporary file %s: %s", path, exc)
