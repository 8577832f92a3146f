"""Device spec loading, validation, and segment lookup for DFU transfers."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from provctl.core.errors import (
    SpecLoadError,
    SpecValidationError,
    UnknownDeviceError,
    UnknownSegmentError,
)
from provctl.core.model import DeviceSpec, Padding, SegmentSpec

_DFU_ID_RE = re.compile(r"^[0-9a-f]{4}:[0-9a-f]{4}$")
_MAX_ADDRESS = 0xFFFFFFFF
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise SpecValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


class SegmentSpecRegistry:
    """Read-only lookup from DFU id to device spec and its named segments."""

    def __init__(self, specs: dict[str, DeviceSpec]) -> None:
        self._specs = dict(specs)

    def __contains__(self, dfu_id: object) -> bool:
        return isinstance(dfu_id, str) and dfu_id.lower() in self._specs

    def devices(self) -> list[DeviceSpec]:
        return sorted(self._specs.values(), key=lambda s: s.dfu_id)

    def spec_for_device(self, dfu_id: str) -> DeviceSpec:
        spec = self._specs.get(dfu_id.lower()) if dfu_id else None
        if spec is None:
            raise UnknownDeviceError(
                f"DFU id '{dfu_id}' has no specification. Don't know how to read/write."
            )
        return spec

    def spec_for_platform(self, platform_id: int) -> DeviceSpec:
        for spec in self._specs.values():
            if spec.platform_id == platform_id:
                return spec
        raise UnknownDeviceError(f"Platform {platform_id} has no specification.")

    def spec_for_segment(self, dfu_id: str, segment: str) -> SegmentSpec:
        spec = self.spec_for_device(dfu_id)
        if not segment:
            raise UnknownSegmentError("Segment name required. Don't know where to read/write.")
        segment_spec = spec.segments.get(segment)
        if segment_spec is None:
            available = ", ".join(sorted(spec.segments))
            raise UnknownSegmentError(
                f"Segment '{segment}' has no specs for {spec.product_name} ({spec.dfu_id}). "
                f"Available: {available}"
            )
        return segment_spec


@dataclass(frozen=True)
class LoadedRegistry:
    registry: SegmentSpecRegistry
    warnings: tuple[str, ...]


def load_schema_validator(name: str = "device_spec.schema.json") -> Any:
    schema_text = resources.files("provctl.schemas").joinpath(name).read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _spec_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "provctl/specs", xdg_data / "provctl/specs"


def read_yaml(path: Path | Traversable, *, what: str = "spec") -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SpecLoadError(f"Could not read {what} file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise SpecValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise SpecValidationError(f"{what.capitalize()} file {path} must contain a mapping at root")
    return loaded


def _normalize_address(value: Any, *, context: str) -> int:
    if isinstance(value, int):
        address = value
    else:
        text = str(value).strip().lower()
        try:
            address = int(text, 16) if text.startswith("0x") else int(text)
        except ValueError as exc:
            raise SpecValidationError(f"{context} must be an integer or 0x-prefixed hex") from exc
    if not 0 <= address <= _MAX_ADDRESS:
        raise SpecValidationError(f"{context} is outside the 32-bit address space")
    return address


def _build_spec(doc: dict[str, Any], source: Path | Traversable) -> DeviceSpec:
    validator = load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise SpecValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    dfu_id = doc["dfu_id"].strip().lower()
    if not _DFU_ID_RE.match(dfu_id):
        raise SpecValidationError(f"dfu_id '{doc['dfu_id']}' in {source} must look like 'vvvv:pppp'")

    default_padding = Padding(doc.get("write_padding", "none"))
    segments: dict[str, SegmentSpec] = {}
    for name, segment_doc in doc["segments"].items():
        context = f"{dfu_id}.{name}"
        size = segment_doc.get("size")
        segments[name] = SegmentSpec(
            name=name,
            address=_normalize_address(segment_doc["address"], context=f"{context}.address"),
            alt=int(segment_doc["alt"]),
            size=int(size) if size is not None else None,
            padding=Padding(segment_doc.get("padding", default_padding.value)),
        )

    return DeviceSpec(
        dfu_id=dfu_id,
        product_name=doc["product_name"],
        platform_id=int(doc["platform_id"]),
        segments=segments,
    )


def _iter_packaged_spec_paths() -> list[Traversable]:
    spec_root = resources.files("provctl.specs")
    return [item for item in spec_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_spec_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _spec_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_registry() -> LoadedRegistry:
    specs: dict[str, DeviceSpec] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_spec_paths(), key=lambda p: p.name):
        spec = _build_spec(read_yaml(path), path)
        specs[spec.dfu_id] = spec

    for path in _iter_user_spec_paths():
        spec = _build_spec(read_yaml(path), path)
        if spec.dfu_id in specs:
            warning = f"User spec '{spec.dfu_id}' overrides packaged spec"
            LOGGER.warning(warning)
            warnings.append(warning)
        specs[spec.dfu_id] = spec

    return LoadedRegistry(registry=SegmentSpecRegistry(specs), warnings=tuple(warnings))
