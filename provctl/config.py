"""Settings loaded from the user config file and PROVCTL_* environment variables."""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jsonschema import ValidationError

from provctl.core.errors import ConfigError, ProvctlError
from provctl.core.spec_registry import load_schema_validator, read_yaml

ENV_PREFIX = "PROVCTL_"
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    dfu_util: str = "dfu-util"
    use_sudo_for_dfu: bool = False
    list_timeout_s: float = 6.0
    device_ap_prefix: str = "Photon-"
    softap_url: str = "http://192.168.0.1"
    softap_timeout_s: float = 8.0
    api_url: str = "https://api.particle.io"
    access_token: str | None = None
    scan_attempts: int = 10
    scan_initial_delay_s: float = 1.0
    scan_delay_s: float = 2.0
    step_delay_s: float = 1.0
    verify_initial_delay_s: float = 2.0


def config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "provctl/config.yaml"


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    raise ConfigError(f"{context} must be boolean true/false")


def _coerce(name: str, raw: Any, *, context: str) -> Any:
    field_type = Settings.__dataclass_fields__[name].type
    if field_type == "bool":
        return _normalize_bool(raw, context=context)
    try:
        if field_type == "float":
            return float(raw)
        if field_type == "int":
            return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{context} must be a number") from exc
    if raw is None:
        return None
    return str(raw)


def _file_values(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        doc = read_yaml(path, what="config")
    except ProvctlError as exc:
        raise ConfigError(str(exc)) from exc

    validator = load_schema_validator("config.schema.json")
    try:
        validator.validate(doc)
    except ValidationError as exc:
        where = ".".join(str(p) for p in exc.path)
        raise ConfigError(f"Invalid setting {where or '<root>'} in {path}: {exc.message}") from exc
    return {name: _coerce(name, value, context=f"{path}:{name}") for name, value in doc.items()}


def _env_values() -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field in dataclasses.fields(Settings):
        env_name = f"{ENV_PREFIX}{field.name.upper()}"
        if env_name in os.environ:
            values[field.name] = _coerce(field.name, os.environ[env_name], context=env_name)
    return values


def load_settings(path: Path | None = None) -> Settings:
    source = path or config_path()
    values = _file_values(source)
    values.update(_env_values())
    if values:
        LOGGER.debug("Settings overrides: %s", sorted(k for k in values if k != "access_token"))
    return Settings(**values)
