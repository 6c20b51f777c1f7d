"""
acquisition.py
==============
Download JDKs and build tools that the user does not already provide.

Per tool state machine:

    unconfigured → checking-local → user-satisfied
                                  → needs-download → installed (cached)
                                                   → downloading → extracting → installed
                                                                             → failed

  - A valid user install (outside the managed storage root) is never
    downloaded over.
  - ``version.txt`` beside each managed install records the installed
    version; a match with the remote latest skips the transfer.
  - Archives are extracted into a staging directory and only swapped in
    after validation, so a broken extraction never replaces a working
    install or ends up referenced in settings.
  - Network failures are reported to the operator; everything else is
    logged. One tool failing never cancels the others.

Sources:
  JDK     – Eclipse Adoptium (Temurin) API
  Gradle  – https://services.gradle.org/versions/current
  Maven   – Maven Central ``maven-metadata.xml``
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

import aiohttp

from downloader import Downloader, DownloadError, DownloadRequest
from host_env import HostEnvironment
from jdk_probe import is_valid_home, read_version_marker, write_version_marker
from progress import NullProgress
from runtimes import RuntimeList, RuntimeReconciler, name_of
from settings_store import SettingsStore

logger = logging.getLogger(__name__)

ADOPTIUM_API = "https://api.adoptium.net/v3"
GRADLE_VERSIONS_URL = "https://services.gradle.org/versions/current"
MAVEN_REPO_URL = "https://repo.maven.apache.org/maven2/org/apache/maven/apache-maven/"

CONFIG_KEY_GRADLE_HOME = "java.import.gradle.home"
CONFIG_KEY_MAVEN_EXE_PATH = "maven.executable.path"

API_TIMEOUT = aiohttp.ClientTimeout(total=30)

NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, DownloadError)


class AcquisitionError(Exception):
    """A remote descriptor could not be used (bad payload, unsupported platform)."""


class AcquisitionState(str, Enum):
    UNCONFIGURED = "unconfigured"
    CHECKING_LOCAL = "checking-local"
    USER_SATISFIED = "user-satisfied"
    NEEDS_DOWNLOAD = "needs-download"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    INSTALLED = "installed"
    FAILED = "failed"


# ──────────────────────────────────────────────
#  Result Objects
# ──────────────────────────────────────────────

@dataclass
class RemoteRelease:
    """Latest version advertised by a tool's remote descriptor."""

    version: str
    download_url: str
    file_name: str


@dataclass
class AcquisitionResult:
    """Outcome of acquiring one tool."""

    tool: str
    state: AcquisitionState = AcquisitionState.UNCONFIGURED
    path: Optional[str] = None
    version: str = ""
    previous_version: Optional[str] = None
    from_cache: bool = False
    error: Optional[str] = None
    history: List[AcquisitionState] = field(default_factory=list)

    def transition(self, state: AcquisitionState) -> None:
        logger.debug("%s: %s → %s", self.tool, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    @property
    def success(self) -> bool:
        return self.state in (AcquisitionState.USER_SATISFIED, AcquisitionState.INSTALLED)


# ──────────────────────────────────────────────
#  Tools
# ──────────────────────────────────────────────

class ManagedTool:
    """A tool that can be auto-downloaded into the managed storage root."""

    name = "tool"
    strip_components = 1

    def __init__(self, env: HostEnvironment) -> None:
        self.env = env

    @property
    def install_dir(self) -> Path:
        raise NotImplementedError

    def home_for(self, install_dir: Path) -> Path:
        return install_dir

    def is_valid(self, install_dir: Path) -> bool:
        raise NotImplementedError

    async def check_local(self) -> Optional[str]:
        """Path of a usable user install, or None if a managed one is wanted."""
        raise NotImplementedError

    async def fetch_release(self, session: aiohttp.ClientSession) -> RemoteRelease:
        raise NotImplementedError

    async def on_installed(self, home: str) -> None:
        raise NotImplementedError


class JdkTool(ManagedTool):
    """Temurin JDK for one major version, fed back into the runtime list."""

    def __init__(
        self,
        env: HostEnvironment,
        major_version: int,
        reconciler: RuntimeReconciler,
        runtimes: RuntimeList,
    ) -> None:
        super().__init__(env)
        self.major_version = major_version
        self.reconciler = reconciler
        self.runtimes = runtimes
        self.name = name_of(major_version)

    @property
    def install_dir(self) -> Path:
        return self.env.managed_dir("java", self.major_version)

    def home_for(self, install_dir: Path) -> Path:
        return install_dir / "Contents" / "Home" if self.env.is_mac else install_dir

    def is_valid(self, install_dir: Path) -> bool:
        return is_valid_home(self.home_for(install_dir), self.env)

    async def check_local(self) -> Optional[str]:
        runtime = await self.reconciler.user_runtime(self.runtimes, self.major_version)
        return runtime.path if runtime else None

    async def fetch_release(self, session: aiohttp.ClientSession) -> RemoteRelease:
        os_id, arch_id = self.env.os_id, self.env.arch_id
        if not os_id or not arch_id:
            raise AcquisitionError(
                f"Unsupported platform for JDK download: {self.env.system} {self.env.machine}"
            )
        url = (
            f"{ADOPTIUM_API}/assets/latest/{self.major_version}/hotspot"
            f"?os={os_id}&architecture={arch_id}&image_type=jdk&vendor=eclipse"
        )
        async with session.get(url, timeout=API_TIMEOUT) as resp:
            if resp.status != 200:
                raise DownloadError(f"Adoptium API returned {resp.status} for Java {self.major_version}")
            releases = await resp.json()
        if not releases:
            raise AcquisitionError(f"No Temurin release for Java {self.major_version} on {os_id}/{arch_id}")
        release = releases[0]
        package = release.get("binary", {}).get("package", {})
        version = release.get("release_name") or release.get("version", {}).get("semver", "")
        if not package.get("link") or not version:
            raise AcquisitionError(f"Incomplete Adoptium response for Java {self.major_version}")
        return RemoteRelease(
            version=version,
            download_url=package["link"],
            file_name=package.get("name", f"jdk-{self.major_version}.tar.gz"),
        )

    async def on_installed(self, home: str) -> None:
        await self.reconciler.fold_installed(self.runtimes, self.major_version, home)


class GradleTool(ManagedTool):
    """Latest Gradle distribution, configured via ``java.import.gradle.home``."""

    name = "gradle"

    def __init__(self, env: HostEnvironment, store: SettingsStore) -> None:
        super().__init__(env)
        self.store = store

    @property
    def install_dir(self) -> Path:
        return self.env.managed_dir("gradle", "latest")

    def is_valid(self, install_dir: Path) -> bool:
        return (install_dir / "bin" / "gradle").is_file()

    async def check_local(self) -> Optional[str]:
        configured = self.store.get(CONFIG_KEY_GRADLE_HOME)
        if configured:
            if not self.is_valid(Path(configured)):
                logger.info("Remove invalid settings %s %s", CONFIG_KEY_GRADLE_HOME, configured)
                await self.store.write_awaited(CONFIG_KEY_GRADLE_HOME, None)
            elif self.env.is_user_installed(configured):
                logger.info("Available Gradle (User installed) %s", configured)
                return configured
            else:
                return None
        on_path = self.env.which("gradle")
        if on_path:
            # gradlew > settings > PATH, so PATH needs no setting
            logger.info("Available Gradle (PATH) %s", on_path)
            return on_path
        return None

    async def fetch_release(self, session: aiohttp.ClientSession) -> RemoteRelease:
        async with session.get(GRADLE_VERSIONS_URL, timeout=API_TIMEOUT) as resp:
            if resp.status != 200:
                raise DownloadError(f"Gradle versions API returned {resp.status}")
            data = await resp.json(content_type=None)
        version = data.get("version")
        download_url = data.get("downloadUrl")
        if not version or not download_url:
            raise AcquisitionError("Incomplete Gradle versions response")
        return RemoteRelease(version=version, download_url=download_url, file_name=f"gradle-{version}-bin.zip")

    async def on_installed(self, home: str) -> None:
        await self.store.update_if_changed(CONFIG_KEY_GRADLE_HOME, home, awaited=True)


class MavenTool(ManagedTool):
    """Latest Maven 3.x release, configured via ``maven.executable.path``."""

    name = "maven"

    def __init__(self, env: HostEnvironment, store: SettingsStore) -> None:
        super().__init__(env)
        self.store = store

    @property
    def install_dir(self) -> Path:
        return self.env.managed_dir("maven", "latest")

    def exe_path(self, install_dir: Path) -> Path:
        return install_dir / "bin" / ("mvn.cmd" if self.env.is_windows else "mvn")

    def is_valid(self, install_dir: Path) -> bool:
        return self.exe_path(install_dir).is_file()

    async def check_local(self) -> Optional[str]:
        configured = self.store.get(CONFIG_KEY_MAVEN_EXE_PATH)
        if configured:
            if not Path(configured).is_file():
                logger.info("Remove invalid settings %s %s", CONFIG_KEY_MAVEN_EXE_PATH, configured)
                await self.store.write_awaited(CONFIG_KEY_MAVEN_EXE_PATH, None)
            elif self.env.is_user_installed(configured):
                logger.info("Available Maven (User installed) %s", configured)
                return configured
            else:
                return None
        on_path = self.env.which("mvn")
        if on_path:
            # settings > mvnw > PATH, so PATH needs no setting
            logger.info("Available Maven (PATH) %s", on_path)
            return on_path
        return None

    async def fetch_release(self, session: aiohttp.ClientSession) -> RemoteRelease:
        async with session.get(MAVEN_REPO_URL + "maven-metadata.xml", timeout=API_TIMEOUT) as resp:
            if resp.status != 200:
                raise DownloadError(f"Maven metadata returned {resp.status}")
            xml = await resp.text()
        versions = re.findall(r"<version>(\d+\.\d+\.\d+)</version>", xml)
        if not versions:
            raise AcquisitionError("No Maven release in maven-metadata.xml")
        version = versions[-1]
        file_name = f"apache-maven-{version}-bin.tar.gz"
        return RemoteRelease(
            version=version,
            download_url=f"{MAVEN_REPO_URL}{version}/{file_name}",
            file_name=file_name,
        )

    async def on_installed(self, home: str) -> None:
        exe = str(self.exe_path(Path(home)))
        await self.store.update_if_changed(CONFIG_KEY_MAVEN_EXE_PATH, exe, awaited=True)


# ──────────────────────────────────────────────
#  AcquisitionCoordinator
# ──────────────────────────────────────────────

class AcquisitionCoordinator:
    """
    Runs the acquisition state machine for any number of tools.

    Args:
        session:    aiohttp session for descriptor requests and downloads
        downloader: Download/extract collaborator
        progress:   Progress sink (``report`` / ``error``)
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        downloader: Optional[Downloader] = None,
        progress: Optional[NullProgress] = None,
    ) -> None:
        self.session = session
        self.progress = progress or NullProgress()
        self.downloader = downloader or Downloader(session, self.progress)

    async def acquire_all(self, tools: List[ManagedTool]) -> List[AcquisitionResult]:
        """Acquire every tool concurrently; failures stay per tool."""
        outcomes = await asyncio.gather(
            *(self.acquire(tool) for tool in tools),
            return_exceptions=True,
        )
        results: List[AcquisitionResult] = []
        for tool, outcome in zip(tools, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Acquisition of %s crashed: %s", tool.name, outcome)
                result = AcquisitionResult(tool=tool.name, error=str(outcome))
                result.transition(AcquisitionState.FAILED)
                results.append(result)
            else:
                results.append(outcome)
        return results

    async def acquire(self, tool: ManagedTool) -> AcquisitionResult:
        result = AcquisitionResult(tool=tool.name)

        # ── checking-local ──
        result.transition(AcquisitionState.CHECKING_LOCAL)
        local = await tool.check_local()
        if local:
            result.path = local
            result.transition(AcquisitionState.USER_SATISFIED)
            return result

        # ── needs-download ──
        result.transition(AcquisitionState.NEEDS_DOWNLOAD)
        try:
            release = await tool.fetch_release(self.session)
        except NETWORK_ERRORS as exc:
            return self._network_failure(tool, result, exc)
        except (AcquisitionError, ValueError, KeyError) as exc:
            logger.warning("Cannot check %s for updates: %s", tool.name, exc)
            result.error = str(exc)
            result.transition(AcquisitionState.FAILED)
            return result

        result.version = release.version
        install_dir = tool.install_dir
        result.previous_version = read_version_marker(install_dir)
        if result.previous_version == release.version and tool.is_valid(install_dir):
            logger.info("Available %s %s (No updates)", tool.name, release.version)
            result.path = str(tool.home_for(install_dir))
            result.from_cache = True
            await tool.on_installed(result.path)
            result.transition(AcquisitionState.INSTALLED)
            return result

        # ── downloading / extracting ──
        staging_dir = install_dir.with_name(install_dir.name + "_staging")
        request = DownloadRequest(
            url=release.download_url,
            dest_file=install_dir.with_name(f"{install_dir.name}_download_tmp_{release.file_name}"),
            dest_dir=staging_dir,
            target_message=f"{tool.name} {release.version}",
            strip_components=tool.strip_components,
        )
        result.transition(AcquisitionState.DOWNLOADING)
        try:
            await self.downloader.execute(
                request, on_extract=lambda: result.transition(AcquisitionState.EXTRACTING),
            )
        except NETWORK_ERRORS as exc:
            request.dest_file.unlink(missing_ok=True)
            return self._network_failure(tool, result, exc)

        if not tool.is_valid(staging_dir):
            logger.info("Invalid %s: %s", tool.name, staging_dir)
            shutil.rmtree(staging_dir, ignore_errors=True)
            result.error = "extracted archive is not a valid install"
            result.transition(AcquisitionState.FAILED)
            return result

        try:
            await asyncio.to_thread(self._swap_in, staging_dir, install_dir, release.version)
        except OSError as exc:
            logger.error("Failed to install %s into %s: %s", tool.name, install_dir, exc)
            shutil.rmtree(staging_dir, ignore_errors=True)
            self.progress.error(f"{tool.name} install failed. {exc}")
            result.error = str(exc)
            result.transition(AcquisitionState.FAILED)
            return result
        result.path = str(tool.home_for(install_dir))
        await tool.on_installed(result.path)
        result.transition(AcquisitionState.INSTALLED)

        if result.previous_version:
            self.progress.report(
                f"UPDATE SUCCESS {tool.name}: {result.previous_version} -> {release.version}"
            )
        else:
            self.progress.report(f"INSTALL SUCCESS {tool.name}: {release.version}")
        return result

    @staticmethod
    def _swap_in(staging_dir: Path, install_dir: Path, version: str) -> None:
        """Replace ``install_dir`` with ``staging_dir``; the old install survives a failed rename."""
        backup_dir = install_dir.with_name(f"{install_dir.name}_old")
        shutil.rmtree(backup_dir, ignore_errors=True)
        if install_dir.exists():
            install_dir.rename(backup_dir)
        try:
            staging_dir.rename(install_dir)
        except OSError:
            if backup_dir.exists():
                backup_dir.rename(install_dir)
            raise
        write_version_marker(install_dir, version)
        shutil.rmtree(backup_dir, ignore_errors=True)

    def _network_failure(
        self, tool: ManagedTool, result: AcquisitionResult, exc: BaseException,
    ) -> AcquisitionResult:
        message = f"{tool.name} download failed. {exc or type(exc).__name__}"
        self.progress.error(message)
        result.error = str(exc) or type(exc).__name__
        result.transition(AcquisitionState.FAILED)
        return result
