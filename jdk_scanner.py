"""
jdk_scanner.py
==============
Discover installed JDKs across OS conventions and package managers.

Each strategy lists root directories and globs ``<root>/*/bin/javac``;
the JDK home is two levels above each hit. Strategies run concurrently
and independently: a failing strategy contributes zero results and is
reported in ``ScanReport.failures``.

Strategies:
  java_home            – JAVA_HOME, JDK_HOME, javac on PATH
  system               – /usr/lib/jvm, /Library/Java/JavaVirtualMachines,
                         Program Files vendor folders
  homebrew             – Homebrew / Linuxbrew openjdk formulae
  sdkman               – ~/.sdkman/candidates/java
  jenv / jabba / asdf  – version manager install dirs
  gradle_toolchains    – ~/.gradle/jdks
  intellij             – ~/.jdks
  windows_distributors – BellSoft, OpenJDK, RedHat, Semeru
  scoop                – scoop apps/*jdk*
  pleiades             – Pleiades all-in-one (Windows)
"""

from __future__ import annotations

import asyncio
import glob
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from host_env import HostEnvironment
from jdk_probe import DetectedJdk, find_by_path, fix_path, is_newer

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
#  Scan Report
# ──────────────────────────────────────────────

@dataclass
class ScanReport:
    """Outcome of one scan."""

    latest: Dict[int, DetectedJdk] = field(default_factory=dict)
    detections: List[DetectedJdk] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)


def select_latest(
    detections: Iterable[DetectedJdk],
    supported_versions: Iterable[int] = (),
) -> Dict[int, DetectedJdk]:
    """
    Keep the newest detection per major version.

    A previous pick is only replaced by a strictly newer full version.
    Majors outside ``supported_versions`` are skipped (unless it is empty).
    """
    supported = set(supported_versions)
    latest: Dict[int, DetectedJdk] = {}
    for jdk in detections:
        if supported and jdk.major_version not in supported:
            continue
        current = latest.get(jdk.major_version)
        if current is None or is_newer(jdk.full_version, current.full_version):
            latest[jdk.major_version] = jdk
    return latest


# ──────────────────────────────────────────────
#  JdkScanner
# ──────────────────────────────────────────────

class JdkScanner:
    """
    Scans the host for JDK installations.

    Args:
        env: Host environment (platform, home, environment variables)
    """

    def __init__(self, env: HostEnvironment) -> None:
        self.env = env
        self.strategies: Dict[str, Callable[[], List[str]]] = {
            "java_home": self._java_home_homes,
            "system": self._system_homes,
            "homebrew": self._homebrew_homes,
            "sdkman": self._sdkman_homes,
            "jenv": self._jenv_homes,
            "jabba": self._jabba_homes,
            "asdf": self._asdf_homes,
            "gradle_toolchains": self._gradle_toolchain_homes,
            "intellij": self._intellij_homes,
            "windows_distributors": self._windows_distributor_homes,
            "scoop": self._scoop_homes,
            "pleiades": self._pleiades_homes,
        }

    # ================================================================
    #  SCAN
    # ================================================================

    async def scan(
        self,
        supported_versions: Iterable[int] = (),
        include: Optional[Iterable[str]] = None,
    ) -> ScanReport:
        """
        Run all (or the ``include``d) strategies and pick the best JDK per major.

        Args:
            supported_versions: Majors worth reporting; empty means all
            include:            Strategy names to run; None means all
        """
        supported = list(supported_versions)
        names = list(include) if include is not None else list(self.strategies)
        report = ScanReport()

        results = await asyncio.gather(
            *(self._run_strategy(name) for name in names),
            return_exceptions=True,
        )
        seen: set = set()
        for name, outcome in zip(names, results):
            if isinstance(outcome, BaseException):
                logger.warning("Scan strategy %s failed: %s", name, outcome)
                report.failures[name] = str(outcome) or type(outcome).__name__
                continue
            for jdk in outcome:
                key = os.path.normcase(os.path.realpath(jdk.home_path))
                if key in seen:
                    continue
                seen.add(key)
                report.detections.append(jdk)
                logger.info(
                    "Detected %s %d (%s) %s",
                    name, jdk.major_version, jdk.full_version, jdk.home_path,
                )

        report.latest = select_latest(report.detections, supported)

        # Auto-downloaded JDKs stand in when the user uninstalled their own
        for major in supported:
            if major in report.latest:
                continue  # Prefer user-installed JDK
            home = fix_path(str(self.env.managed_dir("java", major)), self.env)
            if home:
                logger.info("Detected auto-downloaded %d %s", major, home)
                report.latest[major] = DetectedJdk(
                    major_version=major, full_version="", home_path=home, vendor="auto-download",
                )
        return report

    async def _run_strategy(self, name: str) -> List[DetectedJdk]:
        return await asyncio.to_thread(self._probe_all, self.strategies[name])

    def _probe_all(self, strategy: Callable[[], List[str]]) -> List[DetectedJdk]:
        homes = strategy()
        found: List[DetectedJdk] = []
        for home in homes:
            jdk = find_by_path(home, self.env)
            if jdk:  # None for JREs and broken dirs
                found.append(jdk)
        return found

    # ================================================================
    #  GLOB HELPERS
    # ================================================================

    def _glob_homes(self, roots: Iterable[str], ignore: Iterable[str] = ()) -> List[str]:
        """Homes under ``<root>/*/bin/javac`` for every root (roots may be globs)."""
        ignored = set(ignore)
        javac = self.env.exe("javac")
        homes: List[str] = []
        for root in roots:
            pattern = os.path.join(root, "*", "bin", javac)
            for hit in sorted(glob.glob(pattern)):
                home = os.path.dirname(os.path.dirname(hit))
                if ignored.intersection(Path(home).parts):
                    continue
                homes.append(home)
        return homes

    def _with_bundles(self, roots: List[str]) -> List[str]:
        """On macOS also look inside ``<root>/*/Contents`` (→ ``Contents/Home``)."""
        if not self.env.is_mac:
            return roots
        return roots + [os.path.join(r, "*", "Contents") for r in roots]

    def _home(self, *parts: str) -> str:
        return str(self.env.home.joinpath(*parts))

    # ================================================================
    #  STRATEGIES
    # ================================================================

    def _java_home_homes(self) -> List[str]:
        homes: List[str] = []
        for var in ("JAVA_HOME", "JDK_HOME"):
            value = self.env.getenv(var)
            if value:
                homes.append(value)
        javac = self.env.which("javac")
        if javac:
            # javac → bin/ → JDK home
            homes.append(str(Path(javac).resolve().parent.parent))
        return homes

    def _system_homes(self) -> List[str]:
        if self.env.is_linux:
            return self._glob_homes(["/usr/lib/jvm", "/usr/java", "/opt/java", "/opt"])
        if self.env.is_mac:
            return self._glob_homes([
                "/Library/Java/JavaVirtualMachines/*/Contents",
                self._home("Library", "Java", "JavaVirtualMachines", "*", "Contents"),
            ])
        if self.env.is_windows:
            roots: List[str] = []
            for var in ("ProgramFiles", "ProgramFiles(x86)"):
                program_dir = self.env.getenv(var)
                if not program_dir:
                    continue
                for vendor in (
                    "Java", "Eclipse Adoptium", "Eclipse Foundation", "AdoptOpenJDK",
                    "Microsoft", "Zulu", "Amazon Corretto",
                ):
                    roots.append(os.path.join(program_dir, vendor))
            return self._glob_homes(roots)
        return []

    def _homebrew_homes(self) -> List[str]:
        if self.env.is_mac:
            prefixes = ("/opt/homebrew", "/usr/local")
            return self._glob_homes([
                *(f"{p}/opt/openjdk*/libexec/openjdk.jdk/Contents" for p in prefixes),
                *(f"{p}/Cellar/openjdk*/*/libexec/openjdk.jdk/Contents" for p in prefixes),
            ])
        if self.env.is_linux:
            return self._glob_homes([
                "/home/linuxbrew/.linuxbrew/opt/openjdk*",
                self._home(".linuxbrew", "opt", "openjdk*"),
            ])
        return []

    def _sdkman_homes(self) -> List[str]:
        if self.env.is_windows:
            return []
        sdkman_dir = self.env.getenv("SDKMAN_DIR", self._home(".sdkman"))
        return self._glob_homes(
            self._with_bundles([os.path.join(sdkman_dir, "candidates", "java")]),
            ignore=["current"],
        )

    def _jenv_homes(self) -> List[str]:
        if self.env.is_windows:
            return []
        return self._glob_homes([self._home(".jenv", "versions")])

    def _jabba_homes(self) -> List[str]:
        jabba_home = self.env.getenv("JABBA_HOME", self._home(".jabba"))
        return self._glob_homes(self._with_bundles([os.path.join(jabba_home, "jdk")]))

    def _asdf_homes(self) -> List[str]:
        if self.env.is_windows:
            return []
        asdf_dir = self.env.getenv("ASDF_DATA_DIR", self._home(".asdf"))
        return self._glob_homes(self._with_bundles([os.path.join(asdf_dir, "installs", "java")]))

    def _gradle_toolchain_homes(self) -> List[str]:
        gradle_home = self.env.getenv("GRADLE_USER_HOME", self._home(".gradle"))
        return self._glob_homes(self._with_bundles([os.path.join(gradle_home, "jdks")]))

    def _intellij_homes(self) -> List[str]:
        # e.g. C:\Users\<UserName>\.jdks\openjdk-20.0.1\bin
        return self._glob_homes(self._with_bundles([self._home(".jdks")]))

    def _windows_distributor_homes(self) -> List[str]:
        if not self.env.is_windows:
            return []
        roots: List[str] = []
        for var in ("ProgramFiles", "LOCALAPPDATA"):
            program_dir = self.env.getenv(var)
            if program_dir:
                roots.extend(
                    os.path.join(program_dir, dist)
                    for dist in ("BellSoft", "OpenJDK", "RedHat", "Semeru")
                )
        return self._glob_homes(roots)

    def _scoop_homes(self) -> List[str]:
        # e.g. C:\Users\<UserName>\scoop\apps\sapmachine18-jdk\18.0.2.1\bin
        if not self.env.is_windows:
            return []
        user_dir = self.env.getenv("SCOOP", self._home("scoop"))
        global_dir = self.env.getenv(
            "SCOOP_GLOBAL", os.path.join(self.env.getenv("ProgramData", ""), "scoop"),
        )
        roots = [os.path.join(d, "apps", "*jdk*") for d in (user_dir, global_dir)]
        return self._glob_homes(roots, ignore=["current"])

    def _pleiades_homes(self) -> List[str]:
        # e.g. C:\pleiades\java\17\bin, C:\pleiades\2023-03\java\17\bin
        if not self.env.is_windows:
            return []
        roots = [
            f"{drive}:/pleiades*/{sub}java"
            for drive in ("c", "d")
            for sub in ("", "20*/")
        ]
        return self._glob_homes(roots)
