from provctl.core.device_match import dfu_ids_from_output, known_dfu_ids, missing_device_permissions
from provctl.core.model import DeviceSpec, SegmentSpec
from provctl.core.spec_registry import SegmentSpecRegistry

LISTING = """dfu-util 0.9

Copyright 2005-2009 Weston Schmidt, Harald Welte and OpenMoko Inc.
Deducing device DFU version from functional descriptor length
Found Runtime: [05ac:8290] ver=0104, devnum=2, cfg=1, intf=3, path="20-2", alt=0, name="UNKNOWN", serial="UNKNOWN"
Found DFU: [2B04:D006] ver=0250, devnum=17, cfg=1, intf=0, path="1-1", alt=1, name="@DCT Flash   /0x00000000/01*016Kg", serial="00000000010C"
Found DFU: [2b04:d006] ver=0250, devnum=17, cfg=1, intf=0, path="1-1", alt=0, name="@Internal Flash   /0x08000000/03*016Ka", serial="00000000010C"
Found DFU: [dead:beef] ver=0100, devnum=3, cfg=1, intf=0, path="1-2", alt=0, name="other", serial="1"
"""


def _registry() -> SegmentSpecRegistry:
    spec = DeviceSpec(
        dfu_id="2b04:d006",
        product_name="Photon",
        platform_id=6,
        segments={"user-firmware": SegmentSpec(name="user-firmware", address=0x080A0000, alt=0)},
    )
    return SegmentSpecRegistry({spec.dfu_id: spec})


def test_dfu_ids_are_lowercased_and_deduplicated() -> None:
    assert dfu_ids_from_output(LISTING) == ["2b04:d006", "dead:beef"]


def test_runtime_lines_are_ignored() -> None:
    assert "05ac:8290" not in dfu_ids_from_output(LISTING)
    assert dfu_ids_from_output("") == []


def test_known_ids_filter_by_registry() -> None:
    assert known_dfu_ids(LISTING, _registry()) == ["2b04:d006"]


def test_permission_marker() -> None:
    assert missing_device_permissions("dfu-util: Cannot open DFU device 2b04:d006\n")
    assert not missing_device_permissions("")
    assert not missing_device_permissions("dfu-util: No DFU capable USB device available")
