"""
jdk_probe.py
============
Probe a single directory for a usable JDK and compare JDK version strings.

Capabilities:
  - Validate a JDK home (``bin/javac`` present and version readable)
  - Repair imprecise paths (``.../bin``, one or two levels too deep,
    macOS bundle directories)
  - Read the full version from the ``release`` file, falling back to
    ``java -version``
  - Compare vendor version strings (``1.8.0_392``, ``17.0.9+9``)

All probe functions fail closed: filesystem and parse errors produce a
negative result, never an exception.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from packaging.version import InvalidVersion, Version

from host_env import HostEnvironment

logger = logging.getLogger(__name__)

# e.g. /jdk/bin/java -> /jdk
MAX_UPPER_LEVEL = 2

_RELEASE_VERSION_RE = re.compile(r'^JAVA_VERSION="?([^"\s]+)"?', re.MULTILINE)


# ──────────────────────────────────────────────
#  DetectedJdk
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class DetectedJdk:
    """A JDK found on disk during one scan. Never persisted directly."""

    major_version: int
    full_version: str
    home_path: str
    vendor: str = "unknown"


# ──────────────────────────────────────────────
#  Version parsing / comparison
# ──────────────────────────────────────────────

def parse_major_version(full_version: str) -> Optional[int]:
    """
    Extract the major version from a Java version string.

    ``1.8.0_392`` → 8, ``17.0.9`` → 17, ``21-ea`` → 21. None if unparsable.
    """
    match = re.match(r"(\d+)(?:\.(\d+))?", full_version.strip())
    if not match:
        return None
    major = int(match.group(1))
    if major == 1 and match.group(2):
        return int(match.group(2))
    return major


def is_newer(left: str, right: str) -> bool:
    """
    Return True if version ``left`` is strictly newer than ``right``.

    Underscore patch separators are normalised to dots first
    (``1.8.0_362`` → ``1.8.0.362``). Unparsable input is never newer.
    """
    try:
        return Version(left.replace("_", ".")) > Version(right.replace("_", "."))
    except (InvalidVersion, TypeError, AttributeError) as exc:
        logger.warning("Failed compare [%s] [%s]: %s", left, right, exc)
        return False


# ──────────────────────────────────────────────
#  Probe
# ──────────────────────────────────────────────

def javac_path(home_dir: str | Path, env: HostEnvironment) -> Path:
    return Path(home_dir) / "bin" / env.exe("javac")


def java_path(home_dir: str | Path, env: HostEnvironment) -> Path:
    return Path(home_dir) / "bin" / env.exe("java")


def _read_release_version(home_dir: Path) -> str:
    release = home_dir / "release"
    if not release.is_file():
        return ""
    match = _RELEASE_VERSION_RE.search(release.read_text(encoding="utf-8", errors="replace"))
    return match.group(1) if match else ""


def _run_java_version(binary: Path) -> str:
    """Run ``java -version`` and return the quoted version string, or ""."""
    try:
        result = subprocess.run(
            [str(binary), "-version"],
            capture_output=True, text=True, timeout=15,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("java -version failed for %s: %s", binary, exc)
        return ""
    output = result.stderr or result.stdout
    for line in output.splitlines():
        if "version" in line.lower():
            match = re.search(r'"([^"]+)"', line)
            if match:
                return match.group(1)
            return line.split()[-1].strip('"')
    return ""


def _read_full_version(home_dir: Path, env: HostEnvironment) -> str:
    version = _read_release_version(home_dir)
    if version:
        return version
    binary = java_path(home_dir, env)
    if binary.is_file():
        return _run_java_version(binary)
    return ""


def guess_vendor(path: str, full_version: str = "") -> str:
    """Guess the JDK vendor from path or version string."""
    path_lower = path.lower()
    fv_lower = full_version.lower()

    if "temurin" in path_lower or "adoptium" in path_lower or "temurin" in fv_lower:
        return "adoptium"
    if "zulu" in path_lower or "azul" in fv_lower:
        return "azul-zulu"
    if "corretto" in path_lower or "corretto" in fv_lower:
        return "amazon-corretto"
    if "graalvm" in path_lower or "graal" in fv_lower:
        return "graalvm"
    if "microsoft" in path_lower:
        return "microsoft"
    if "bellsoft" in path_lower or "liberica" in path_lower:
        return "bellsoft-liberica"
    if "semeru" in path_lower:
        return "ibm-semeru"
    if "sapmachine" in path_lower:
        return "sapmachine"
    if "oracle" in path_lower:
        return "oracle"
    if ".sdkman" in path_lower:
        return "sdkman"
    if "homebrew" in path_lower or "cellar" in path_lower:
        return "homebrew"
    if "openjdk" in path_lower:
        return "openjdk"
    return "system"


def find_by_path(home_dir: Optional[str | Path], env: HostEnvironment) -> Optional[DetectedJdk]:
    """
    Probe ``home_dir`` as a JDK home.

    Returns:
        DetectedJdk if ``bin/javac`` exists and a version is readable, else None
    """
    if not home_dir:
        return None
    try:
        home = Path(home_dir)
        if not javac_path(home, env).is_file():
            return None
        full_version = _read_full_version(home, env)
        major = parse_major_version(full_version) if full_version else None
        if major is None:
            logger.debug("No version metadata under %s", home)
            return None
        return DetectedJdk(
            major_version=major,
            full_version=full_version,
            home_path=os.path.normpath(str(home)),
            vendor=guess_vendor(str(home), full_version),
        )
    except (OSError, ValueError) as exc:
        logger.debug("Probe failed for %s: %s", home_dir, exc)
        return None


def is_valid_home(home_dir: Optional[str | Path], env: HostEnvironment) -> bool:
    """True only if ``home_dir`` is a JDK home with a compiler and version."""
    return find_by_path(home_dir, env) is not None


def fix_path(
    home_dir: Optional[str | Path],
    env: HostEnvironment,
    default: Optional[str] = None,
) -> Optional[str]:
    """
    Return the JDK home that ``home_dir`` most likely meant.

    Tries ``home_dir`` and up to two parents, then (macOS only) the
    nested ``Contents/Home`` and ``Home`` bundle directories.

    Returns:
        The first valid directory, else ``default``
    """
    if not home_dir:
        return default
    origin = os.path.normpath(str(home_dir))
    candidate = origin
    for _ in range(MAX_UPPER_LEVEL + 1):
        if is_valid_home(candidate, env):
            return candidate
        candidate = os.path.dirname(candidate)
    if env.is_mac:
        for nested in (os.path.join(origin, "Contents", "Home"), os.path.join(origin, "Home")):
            if is_valid_home(nested, env):
                return nested
    return default


def read_version_marker(install_dir: str | Path) -> Optional[str]:
    """Return the version recorded in ``version.txt`` of an install dir."""
    marker = Path(install_dir) / "version.txt"
    try:
        return marker.read_text(encoding="utf-8").strip() if marker.is_file() else None
    except OSError as exc:
        logger.debug("Could not read %s: %s", marker, exc)
        return None


def write_version_marker(install_dir: str | Path, version: str) -> None:
    Path(install_dir, "version.txt").write_text(version, encoding="utf-8")

