"""
config.py
=========
Options for one auto-configuration run.

Loaded from an optional JSON file (``jdkauto.json``); missing keys and a
missing or broken file fall back to per-OS defaults. CLI flags are
applied on top by ``main.py``.

Example ``jdkauto.json``::

    {
        "settings_path": "~/.config/Code/User/settings.json",
        "lts_versions": [17, 21, 25],
        "stable_lts_version": 21,
        "download": true
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from host_env import HostEnvironment

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "jdkauto.json"
DEFAULT_LTS_VERSIONS = [8, 11, 17, 21, 25]
DEFAULT_STABLE_LTS_VERSION = 21

_PATH_OPTIONS = ("settings_path", "extensions_dir", "storage_dir", "log_dir")


def default_settings_path(env: HostEnvironment) -> Path:
    """VS Code user settings.json for the current OS."""
    if env.is_windows:
        appdata = env.getenv("APPDATA", str(env.home / "AppData" / "Roaming"))
        return Path(appdata) / "Code" / "User" / "settings.json"
    if env.is_mac:
        return env.home / "Library" / "Application Support" / "Code" / "User" / "settings.json"
    config_home = env.getenv("XDG_CONFIG_HOME", str(env.home / ".config"))
    return Path(config_home) / "Code" / "User" / "settings.json"


def default_extensions_dir(env: HostEnvironment) -> Path:
    return env.home / ".vscode" / "extensions"


@dataclass
class AutoConfigOptions:
    """Resolved options; ``None`` paths are filled from the host defaults."""

    settings_path: Optional[Path] = None
    extensions_dir: Optional[Path] = None
    storage_dir: Optional[Path] = None
    log_dir: Optional[Path] = None
    lts_versions: List[int] = field(default_factory=lambda: list(DEFAULT_LTS_VERSIONS))
    stable_lts_version: int = DEFAULT_STABLE_LTS_VERSION
    download: bool = True
    download_gradle: bool = True
    download_maven: bool = True
    apply_defaults: bool = True
    dry_run: bool = False

    def resolve(self, env: HostEnvironment) -> "AutoConfigOptions":
        """Fill unset paths from ``env``; returns self."""
        if self.storage_dir is None:
            self.storage_dir = env.storage_dir
        if self.settings_path is None:
            self.settings_path = default_settings_path(env)
        if self.extensions_dir is None:
            self.extensions_dir = default_extensions_dir(env)
        if self.log_dir is None:
            self.log_dir = Path(self.storage_dir) / "logs"
        return self

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = str(value) if isinstance(value, Path) else value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutoConfigOptions":
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.warning("Ignoring unknown option: %s", key)
                continue
            if key in _PATH_OPTIONS and value is not None:
                value = Path(value).expanduser()
            elif key == "lts_versions":
                value = sorted({int(v) for v in value})
            elif key == "stable_lts_version":
                value = int(value)
            kwargs[key] = value
        return cls(**kwargs)


def load_options(config_path: str | Path = DEFAULT_CONFIG_FILE) -> AutoConfigOptions:
    """Load options from ``config_path``, using defaults on any problem."""
    path = Path(config_path)
    if not path.exists():
        logger.info("Config file not found, using defaults")
        return AutoConfigOptions()
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError("top level must be an object")
        options = AutoConfigOptions.from_dict(data)
        logger.debug("Config loaded from %s", path)
        return options
    except (OSError, ValueError, TypeError) as exc:
        # json.JSONDecodeError is a ValueError
        logger.error("Failed to load config: %s", exc)
        return AutoConfigOptions()
