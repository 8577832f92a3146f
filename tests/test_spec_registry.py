from __future__ import annotations

from pathlib import Path

import pytest

from provctl.core.errors import SpecValidationError, UnknownDeviceError, UnknownSegmentError
from provctl.core.model import Padding
from provctl.core.spec_registry import load_registry


def _write_spec(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_load_packaged_specs() -> None:
    loaded = load_registry()
    registry = loaded.registry
    assert loaded.warnings == ()
    assert "2b04:d006" in registry
    assert "1d50:607f" in registry

    photon = registry.spec_for_device("2b04:d006")
    assert photon.product_name == "Photon"
    user = photon.segments["user-firmware"]
    assert user.address == 0x080A0000
    assert user.alt == 0
    assert user.size is None
    assert user.padding is Padding.EVEN
    assert photon.segments["transport"].padding is Padding.NONE

    core = registry.spec_for_device("1d50:607f")
    assert core.segments["user-firmware"].padding is Padding.NONE


def test_spec_for_segment_is_total_over_registry() -> None:
    registry = load_registry().registry
    for spec in registry.devices():
        for name, declared in spec.segments.items():
            found = registry.spec_for_segment(spec.dfu_id, name)
            assert found == declared
            assert (found.address, found.size, found.alt, found.padding) == (
                declared.address,
                declared.size,
                declared.alt,
                declared.padding,
            )
        with pytest.raises(UnknownSegmentError):
            registry.spec_for_segment(spec.dfu_id, "no-such-segment")


def test_lookup_misses_raise() -> None:
    registry = load_registry().registry
    with pytest.raises(UnknownDeviceError):
        registry.spec_for_device("dead:beef")
    with pytest.raises(UnknownDeviceError):
        registry.spec_for_segment("dead:beef", "user-firmware")
    with pytest.raises(UnknownSegmentError):
        registry.spec_for_segment("2b04:d006", "")


def test_spec_for_platform() -> None:
    registry = load_registry().registry
    assert registry.spec_for_platform(6).dfu_id == "2b04:d006"
    assert registry.spec_for_platform(10).product_name == "Electron"
    with pytest.raises(UnknownDeviceError):
        registry.spec_for_platform(999)


def test_user_spec_overrides_packaged_with_warning(tmp_path: Path) -> None:
    _write_spec(
        tmp_path / "cfg" / "provctl" / "specs" / "photon.yaml",
        """
dfu_id: "2B04:D006"
product_name: Photon Custom
platform_id: 6
segments:
  user-firmware:
    address: "0x080C0000"
    alt: 0
    padding: even
""",
    )

    loaded = load_registry()
    spec = loaded.registry.spec_for_device("2b04:d006")
    assert spec.product_name == "Photon Custom"
    assert spec.segments["user-firmware"].address == 0x080C0000
    assert any("overrides packaged spec" in w for w in loaded.warnings)


def test_device_level_padding_is_segment_default(tmp_path: Path) -> None:
    _write_spec(
        tmp_path / "data" / "provctl" / "specs" / "board.yaml",
        """
dfu_id: "1234:abcd"
product_name: Board
platform_id: 42
write_padding: even
segments:
  app:
    address: 134217728
    alt: 0
  eeprom:
    address: 0x0
    alt: 1
    size: 64
    padding: none
""",
    )

    registry = load_registry().registry
    assert registry.spec_for_segment("1234:abcd", "app").padding is Padding.EVEN
    assert registry.spec_for_segment("1234:abcd", "app").address_hex == "0x08000000"
    assert registry.spec_for_segment("1234:abcd", "eeprom").padding is Padding.NONE


def test_invalid_address_rejected(tmp_path: Path) -> None:
    _write_spec(
        tmp_path / "cfg" / "provctl" / "specs" / "bad.yaml",
        """
dfu_id: "1234:abcd"
product_name: Bad
platform_id: 1
segments:
  app:
    address: "0xZZZZ"
    alt: 0
""",
    )

    with pytest.raises(SpecValidationError):
        load_registry()


def test_missing_required_keys_rejected(tmp_path: Path) -> None:
    _write_spec(
        tmp_path / "cfg" / "provctl" / "specs" / "missing.yaml",
        """
dfu_id: "1234:abcd"
product_name: Missing
segments:
  app:
    address: 0
    alt: 0
""",
    )

    with pytest.raises(SpecValidationError) as exc:
        load_registry()
    assert "platform_id" in str(exc.value)


def test_duplicate_keys_rejected(tmp_path: Path) -> None:
    _write_spec(
        tmp_path / "cfg" / "provctl" / "specs" / "dupe.yaml",
        """
dfu_id: "1234:abcd"
product_name: Dupe
platform_id: 1
segments:
  app:
    address: 0
    alt: 0
  app:
    address: 4
    alt: 0
""",
    )

    with pytest.raises(SpecValidationError):
        load_registry()


def test_malformed_dfu_id_rejected(tmp_path: Path) -> None:
    _write_spec(
        tmp_path / "cfg" / "provctl" / "specs" / "id.yaml",
        """
dfu_id: "12345abcd"
product_name: Id
platform_id: 1
segments:
  app:
    address: 0
    alt: 0
""",
    )

    with pytest.raises(SpecValidationError):
        load_registry()
