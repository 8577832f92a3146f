"""Matching of DFU listing output against registered device specs."""

from __future__ import annotations

import re

from provctl.core.spec_registry import SegmentSpecRegistry

FOUND_MARKER = "Found DFU"
PERMISSION_MARKER = "Cannot open DFU device"
_DFU_ID_RE = re.compile(r"\[([0-9a-fA-F]{4}:[0-9a-fA-F]{4})\]")


def dfu_ids_from_output(stdout: str) -> list[str]:
    """Return the distinct DFU ids in list output, in first-seen order."""
    seen: set[str] = set()
    ids: list[str] = []
    for line in stdout.splitlines():
        if FOUND_MARKER not in line:
            continue
        match = _DFU_ID_RE.search(line)
        if not match:
            continue
        dfu_id = match.group(1).lower()
        if dfu_id in seen:
            continue
        seen.add(dfu_id)
        ids.append(dfu_id)
    return ids


def known_dfu_ids(stdout: str, registry: SegmentSpecRegistry) -> list[str]:
    return [dfu_id for dfu_id in dfu_ids_from_output(stdout) if dfu_id in registry]


def missing_device_permissions(stderr: str) -> bool:
    return bool(stderr) and PERMISSION_MARKER in stderr
