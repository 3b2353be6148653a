"""Runtime configuration.

Values come from an optional YAML/JSON file and are then overridden by
environment variables, so the bridge can be configured by whatever process
launches it without a file on disk.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from sqlite_bridge.errors import ConfigError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}

# field name -> environment variable
_ENV_VARS: Dict[str, str] = {
    "default_db_name": "DB_NAME",
    "default_bundle_id": "ANDROID_BUNDLE_ID",
    "read_only": "SQLITE_BRIDGE_READ_ONLY",
    "log_level": "MCP_LOG_LEVEL",
    "adb_path": "ADB_PATH",
    "xcrun_path": "XCRUN_PATH",
    "android_serial": "ANDROID_SERIAL",
    "staging_root": "SQLITE_BRIDGE_STAGING_DIR",
}


@dataclass
class BridgeConfig:
    default_db_name: Optional[str] = None
    default_bundle_id: Optional[str] = None
    read_only: bool = False
    log_level: str = "info"
    adb_path: str = "adb"
    xcrun_path: str = "xcrun"
    android_serial: Optional[str] = None
    staging_root: str = tempfile.gettempdir()


def _parse_bool(value: Any, *, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"Invalid boolean for {key}: {value!r}")


def load_config_file(path: Path) -> Dict[str, Any]:
    """Load a YAML/JSON config file; the top level must be a mapping."""

    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        elif path.suffix.lower() == ".json":
            data = json.loads(path.read_text(encoding="utf-8"))
        else:
            raise ConfigError(f"Unsupported config file extension: {path}")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config must be an object: {path}")
    return data


def _coerce(values: Mapping[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(BridgeConfig)}
    out: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"Unknown config key: {key}")
        if key == "read_only":
            out[key] = _parse_bool(value, key=key)
        elif value is None:
            out[key] = None
        else:
            text = str(value).strip()
            out[key] = text or None
    for key in ("log_level", "adb_path", "xcrun_path", "staging_root"):
        if key in out and out[key] is None:
            out.pop(key)
    return out


def load_config(
    path: Path | None = None, *, environ: Mapping[str, str] | None = None
) -> BridgeConfig:
    env = os.environ if environ is None else environ

    values: Dict[str, Any] = {}
    if path is not None:
        values.update(load_config_file(Path(path)))

    for key, var in _ENV_VARS.items():
        if var in env:
            values[key] = env[var]

    return BridgeConfig(**_coerce(values))
