# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Configuration and filesystem locations for GADB.

Handles:
- Packaged YAML defaults loading (gadb_cli/defaults/system.yaml)
- Optional user override file ($GADB_CONFIG), deep-merged over defaults
- Data root resolution for the crash log (GADB_DATA_HOME, ~/.local/share)
- History file locations (platform temp directory)
- ANSI coloring constants
"""

from __future__ import annotations

import os
import tempfile
from importlib import resources as importlib_resources
from pathlib import Path
from typing import Any

import yaml

# -----------------------
# UI + branding constants
# -----------------------

ANSI_COLORS: dict[str, str] = {
    "cyan": "\033[38;5;69;1m",
    "pink": "\033[38;5;169;1m",
    "magenta": "\033[38;5;126;1m",
    "yellow": "\033[38;5;226;1m",
    "reset": "\033[0m",
    "dim": "\033[2m",
    "green": "\033[32m",
    "red": "\033[31m",
}

TAG_COLORS: dict[str, str] = {
    "RUN": "green",
    "ERR": "red",
    "DEV": "cyan",
}


def tag(name: str, text: str) -> str:
    """Render `[NAME] text` with the tag's color."""
    color = ANSI_COLORS[TAG_COLORS.get(name, "reset")]
    return f"{color}[{name}]{ANSI_COLORS['reset']} {text}"


# -----------------------
# Config model wrapper
# -----------------------


class YAMLConfig:
    """Simple config wrapper that implements ConfigModel protocol."""

    def __init__(self, config_dict: dict[str, Any]):
        self._config = config_dict

    def get_path(self, path: str, default: Any = None) -> Any:
        """
        Nested lookup using dot-separated path.
        Example: get_path("repl.history_limit", 100)
        """
        if not path:
            return default

        cur: Any = self._config
        for part in path.split("."):
            if not isinstance(cur, dict):
                return default
            if part not in cur:
                return default
            cur = cur[part]
        return cur

    def get_list(self, path: str, default: list[str] | None = None) -> list[str]:
        val = self.get_path(path, None)
        if not isinstance(val, list):
            return list(default or [])
        return [str(v) for v in val]


# -----------------------
# Data root + history helpers
# -----------------------


def get_data_root() -> Path:
    """Get the data root directory for GADB.

    Resolution order:
    1. GADB_DATA_HOME environment variable (if set)
    2. ~/.local/share (default)
    """
    gadb_data_home = os.getenv("GADB_DATA_HOME")
    if gadb_data_home:
        root = Path(gadb_data_home)
    else:
        root = Path.home() / ".local" / "share"

    root.mkdir(parents=True, exist_ok=True)
    return root


def crash_log_path(data_root: Path) -> Path:
    """<data_root>/gadb/logs/crash.log"""
    return data_root / "gadb" / "logs" / "crash.log"


def history_path(filename: str) -> Path:
    """History files live in the platform temp directory."""
    return Path(tempfile.gettempdir()) / filename


# -----------------------
# Defaults loading
# -----------------------


def _defaults_dir() -> Path:
    """Return the installed path to packaged defaults directory."""
    return Path(
        importlib_resources.files("gadb_cli.defaults")
    )  # type: ignore[arg-type]


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config YAML {path} must load to a mapping/dict.")
    return data


def load_defaults_yaml(filename: str) -> dict[str, Any]:
    """
    Load a YAML file from gadb_cli/defaults/.
    """
    defaults_dir = _defaults_dir()
    path = defaults_dir / filename
    if not path.exists():
        raise FileNotFoundError(
            f"Missing defaults YAML: {filename} "
            f"(looked in {defaults_dir})"
        )
    return _load_yaml_mapping(path)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return base updated with override; nested dicts merge, rest replace."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_system_config(user_path: Path | None = None) -> YAMLConfig:
    """
    Load system.yaml from packaged defaults, merged with the user file.

    The user file is `user_path` if given, else $GADB_CONFIG if set.
    """
    data = load_defaults_yaml("system.yaml")

    if user_path is None:
        env_path = os.getenv("GADB_CONFIG")
        if env_path:
            user_path = Path(env_path)

    if user_path is not None:
        data = deep_merge(data, _load_yaml_mapping(user_path))

    return YAMLConfig(data)
