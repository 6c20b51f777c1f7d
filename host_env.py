"""
host_env.py
===========
Read-only view of the machine the auto-configuration runs on.

Responsibilities:
  - Platform identity (Windows / macOS / Linux) and download arch ids
  - Home directory and environment variables (JAVA_HOME, SCOOP, SDKMAN_DIR, ...)
  - Managed storage root for auto-downloaded tools
  - PATH lookup for executables
  - "User installed" check (outside the managed storage root)

Every component receives a HostEnvironment instead of calling
``platform`` / ``os.environ`` directly, so tests can fake another OS.
"""

from __future__ import annotations

import os
import platform
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

# ──────────────────────────────────────────────
#  Constants
# ──────────────────────────────────────────────

# Map platform.system() → Adoptium OS identifier
_OS_MAP: Dict[str, str] = {
    "Linux": "linux",
    "Darwin": "mac",
    "Windows": "windows",
}

# Map platform.machine() → Adoptium arch identifier
_ARCH_MAP: Dict[str, str] = {
    "x86_64": "x64",
    "AMD64": "x64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "ARM64": "aarch64",
}

# Map platform.system() → VS Code settings OS suffix
_OS_CONFIG_MAP: Dict[str, str] = {
    "Windows": "windows",
    "Darwin": "osx",
    "Linux": "linux",
}

DEFAULT_STORAGE_DIRNAME = ".jdkauto"


# ──────────────────────────────────────────────
#  HostEnvironment
# ──────────────────────────────────────────────

@dataclass
class HostEnvironment:
    """Snapshot of platform, home directory and environment variables."""

    system: str = field(default_factory=platform.system)      # Windows | Linux | Darwin
    machine: str = field(default_factory=platform.machine)    # AMD64, x86_64, arm64, ...
    home: Path = field(default_factory=Path.home)
    environ: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    storage_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        self.home = Path(self.home)
        if self.storage_dir is None:
            self.storage_dir = self.home / DEFAULT_STORAGE_DIRNAME
        self.storage_dir = Path(self.storage_dir)

    # ── Platform ────────────────────────────

    @property
    def is_windows(self) -> bool:
        return self.system == "Windows"

    @property
    def is_mac(self) -> bool:
        return self.system == "Darwin"

    @property
    def is_linux(self) -> bool:
        return self.system == "Linux"

    @property
    def os_config_name(self) -> str:
        """Suffix used by per-OS terminal settings keys."""
        return _OS_CONFIG_MAP.get(self.system, "linux")

    @property
    def os_id(self) -> Optional[str]:
        return _OS_MAP.get(self.system)

    @property
    def arch_id(self) -> Optional[str]:
        return _ARCH_MAP.get(self.machine)

    @property
    def path_delimiter(self) -> str:
        return ";" if self.is_windows else ":"

    def exe(self, name: str) -> str:
        """Return the executable file name for this OS (``javac`` → ``javac.exe``)."""
        return f"{name}.exe" if self.is_windows else name

    # ── Environment variables ───────────────

    def getenv(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.environ.get(name)
        return value if value else default

    def which(self, cmd: str) -> Optional[str]:
        """Locate ``cmd`` on this environment's PATH, or None."""
        search_path = self.environ.get("PATH")
        if not search_path:
            return None
        return shutil.which(cmd, path=search_path)

    # ── Managed storage ─────────────────────

    @property
    def resources_dir(self) -> Path:
        """Directory holding the shell startup files used by terminal profiles."""
        return self.storage_dir / "resources"

    def managed_dir(self, tool: str, version: str | int) -> Path:
        """Install directory of an auto-downloaded tool: ``<storage>/<tool>/<version>``."""
        return self.storage_dir / tool / str(version)

    def _normalize(self, path: str | Path) -> str:
        normalized = os.path.normpath(os.path.abspath(str(path)))
        return normalized.lower() if self.is_windows else normalized

    def is_user_installed(self, path: str | Path) -> bool:
        """True if ``path`` lies outside the managed storage root."""
        checked = self._normalize(path)
        root = self._normalize(self.storage_dir)
        return not (checked == root or checked.startswith(root.rstrip(os.sep) + os.sep))
