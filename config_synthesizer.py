"""
config_synthesizer.py
=====================
Derive every dependent settings key from the reconciled runtime list.

Policy per key: keep a user value while it is still valid, otherwise
compute a default; deprecated keys are removed. All writes go through
``SettingsStore.update_if_changed`` so a run with nothing to change
issues no writes.

Managed keys:
  java.home                           – deprecated, removed
  java.jdt.ls.java.home               – stable LTS (removed if embedded JRE)
  spring-boot.ls.java.home            – stable LTS (removed if embedded JRE)
  salesforcedx-vscode-apex.java.home  – previous LTS (keep if set)
  rsp-ui.rsp.java.home                – stable LTS (keep if set)
  plantuml.java                       – java executable (keep if exists)
  java.import.gradle.java.home        – default runtime (fix if set)
  maven.terminal.customEnv            – JAVA_HOME (+ ZDOTDIR on macOS)
  terminal.integrated.env.windows     – JAVA_HOME and PATH
  terminal.integrated.profiles.<os>   – one profile per runtime
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Dict, Iterable, List, Optional

from acquisition import CONFIG_KEY_GRADLE_HOME, CONFIG_KEY_MAVEN_EXE_PATH
from extensions import LANGUAGE_SERVER_EXTENSION_ID, ExtensionRegistry
from host_env import HostEnvironment
from jdk_probe import find_by_path, fix_path, is_valid_home, java_path
from runtimes import RuntimeEntry, RuntimeList, version_of
from settings_store import SettingsStore

logger = logging.getLogger(__name__)

CONFIG_KEY_DEPRECATED_JAVA_HOME = "java.home"
CONFIG_KEY_GRADLE_JAVA_HOME = "java.import.gradle.java.home"
CONFIG_KEY_MAVEN_CUSTOM_ENV = "maven.terminal.customEnv"
CONFIG_KEY_PLANTUML_JAVA = "plantuml.java"

GRADLE_EXTENSION_ID = "vscjava.vscode-gradle"

# Extensions that run their language server on a JDK of their own choosing
LS_JAVA_HOME_KEYS = [
    (LANGUAGE_SERVER_EXTENSION_ID, "java.jdt.ls.java.home"),
    ("vmware.vscode-spring-boot", "spring-boot.ls.java.home"),
]

BASHRC = """\
# Generated by jdk-autoconfig: terminal profile JAVA_HOME wins over ~/.bashrc
_jdkauto_java_home="$JAVA_HOME"
if [ -f ~/.bashrc ]; then
    . ~/.bashrc
fi
if [ -n "$_jdkauto_java_home" ]; then
    export JAVA_HOME="$_jdkauto_java_home"
    export PATH="$JAVA_HOME/bin:$PATH"
fi
unset _jdkauto_java_home
"""

ZSHRC = """\
# Generated by jdk-autoconfig: terminal profile JAVA_HOME wins over ~/.zshrc
_jdkauto_java_home="$JAVA_HOME"
_jdkauto_zdotdir="$ZDOTDIR"
ZDOTDIR="$HOME"
if [ -f ~/.zshrc ]; then
    . ~/.zshrc
fi
if [ -n "$_jdkauto_java_home" ]; then
    export JAVA_HOME="$_jdkauto_java_home"
    export PATH="$JAVA_HOME/bin:$PATH"
fi
ZDOTDIR="$_jdkauto_zdotdir"
unset _jdkauto_java_home _jdkauto_zdotdir
"""


# ──────────────────────────────────────────────
#  JavaConfig
# ──────────────────────────────────────────────

@dataclass
class JavaConfig:
    """
    Version targets for one run.

    ``download_lts_versions`` is the configured LTS list restricted to the
    versions the language server supports (unrestricted if it reports none).
    """

    supported_names: List[str] = field(default_factory=list)
    download_lts_versions: List[int] = field(default_factory=list)
    latest_lts_version: Optional[int] = None
    stable_lts_version: Optional[int] = None
    embedded_jre: bool = False
    needs_reload: bool = False

    @property
    def supported_versions(self) -> List[int]:
        versions = (version_of(n) for n in self.supported_names)
        return sorted(v for v in versions if v is not None)

    @property
    def scan_versions(self) -> List[int]:
        """Majors worth detecting; the download targets when no allow-list exists."""
        return self.supported_versions or list(self.download_lts_versions)

    @property
    def prev_lts_version(self) -> Optional[int]:
        if len(self.download_lts_versions) < 2:
            return None
        return self.download_lts_versions[-2]

    @classmethod
    def build(
        cls,
        lts_versions: Iterable[int],
        stable_lts_version: Optional[int],
        supported_names: Iterable[str] = (),
        embedded_jre: bool = False,
    ) -> "JavaConfig":
        config = cls(supported_names=list(supported_names), embedded_jre=embedded_jre)
        supported = set(config.supported_versions)
        config.download_lts_versions = sorted(
            v for v in set(lts_versions) if not supported or v in supported
        )
        if config.download_lts_versions:
            config.latest_lts_version = config.download_lts_versions[-1]
        if stable_lts_version in config.download_lts_versions:
            config.stable_lts_version = stable_lts_version
        else:
            config.stable_lts_version = config.latest_lts_version
        logger.info(
            "Supported Java %s, LTS targets %s (latest %s, stable %s)",
            config.supported_versions, config.download_lts_versions,
            config.latest_lts_version, config.stable_lts_version,
        )
        return config


# ──────────────────────────────────────────────
#  ConfigSynthesizer
# ──────────────────────────────────────────────

class ConfigSynthesizer:
    """
    Writes derived settings for a reconciled runtime list.

    Args:
        store:       Settings store
        env:         Host environment
        registry:    Installed-extension capability queries
        java_config: Version targets for this run
    """

    def __init__(
        self,
        store: SettingsStore,
        env: HostEnvironment,
        registry: ExtensionRegistry,
        java_config: JavaConfig,
    ) -> None:
        self.store = store
        self.env = env
        self.registry = registry
        self.java_config = java_config
        self.errors: List[str] = []

    async def _fix(self, path: Optional[str], default: Optional[str] = None) -> Optional[str]:
        return await asyncio.to_thread(fix_path, path, self.env, default)

    async def _is_valid(self, path: Optional[str]) -> bool:
        return await asyncio.to_thread(is_valid_home, path, self.env)

    # ================================================================
    #  ENTRY POINT
    # ================================================================

    async def synthesize(self, runtimes: RuntimeList) -> bool:
        """
        Update all derived keys from ``runtimes``.

        Returns:
            True if a change requires the host to reload (Gradle daemon)
        """
        config = self.java_config
        stable = runtimes.find_by_version(config.stable_lts_version)
        latest = runtimes.find_by_version(config.latest_lts_version)
        default = runtimes.find_default() or latest or stable

        if self.store.get_definition(CONFIG_KEY_DEPRECATED_JAVA_HOME) is not None:
            await self.guarded(
                CONFIG_KEY_DEPRECATED_JAVA_HOME, self.store.remove(CONFIG_KEY_DEPRECATED_JAVA_HOME),
            )

        if not self.env.is_windows:
            await self.guarded("shell resources", asyncio.to_thread(self.ensure_shell_resources))

        await self.guarded("terminal profiles", self.update_terminal_profiles(runtimes))
        if default:
            if self.env.is_windows:
                await self.guarded("terminal env", self.update_terminal_env(default))
            await self.guarded(CONFIG_KEY_GRADLE_JAVA_HOME, self.update_gradle_java_home(default))
        await self.guarded(CONFIG_KEY_MAVEN_CUSTOM_ENV, self.update_maven_custom_env(default))

        for extension_id, key in LS_JAVA_HOME_KEYS:
            await self.guarded(key, self.update_ls_java_home(extension_id, key, stable))

        prev = runtimes.find_by_version(config.prev_lts_version)
        await self.guarded("salesforcedx-vscode-apex.java.home", self.update_optional_java_home(
            "salesforce.salesforcedx-vscode", "salesforcedx-vscode-apex.java.home", prev,
        ))
        await self.guarded("rsp-ui.rsp.java.home", self.update_optional_java_home(
            "redhat.vscode-rsp-ui", "rsp-ui.rsp.java.home", stable,
        ))
        await self.guarded(CONFIG_KEY_PLANTUML_JAVA, self.update_plantuml_java(stable))
        return config.needs_reload

    async def guarded(self, policy: str, step: Awaitable[Any]) -> None:
        """Await one policy; a failure is logged and recorded, never raised."""
        try:
            await step
        except Exception as exc:
            logger.error("Failed to update %s: %s", policy, exc)
            self.errors.append(f"Failed to update {policy}: {exc}")

    # ================================================================
    #  LANGUAGE SERVERS
    # ================================================================

    async def update_ls_java_home(
        self, extension_id: str, key: str, stable: Optional[RuntimeEntry],
    ) -> None:
        """Primary LS home: always the stable LTS, or removed for an embedded JRE."""
        if not self.registry.has_capability(extension_id):
            return
        origin = self.store.get(key)
        if self.java_config.embedded_jre or self.registry.has_embedded_jre(extension_id):
            if self.store.get_definition(key) is not None:
                await self.store.update_if_changed(key, None)  # Use embedded JRE
            return
        fixed_or_default = stable.path if stable else await self._fix(origin)
        if fixed_or_default and fixed_or_default != origin:
            await self.store.update_if_changed(key, fixed_or_default)
        # else keep: unset and unfixable

    async def update_optional_java_home(
        self, extension_id: str, key: str, runtime: Optional[RuntimeEntry],
    ) -> None:
        """Secondary LS home: keep a valid user value, else the given runtime."""
        if runtime is None or not self.registry.has_capability(extension_id):
            return
        origin = self.store.get(key)
        if not origin:
            await self.store.update_if_changed(key, runtime.path)
            return
        if self.env.is_user_installed(origin):
            fixed = await self._fix(origin)
            jdk = await asyncio.to_thread(find_by_path, fixed, self.env) if fixed else None
            minimum = runtime.version or 0
            new_path = fixed if jdk and jdk.major_version >= minimum else runtime.path
        else:
            new_path = runtime.path  # Managed installs follow the runtime list
        if new_path != origin:
            await self.store.update_if_changed(key, new_path)

    async def update_plantuml_java(self, stable: Optional[RuntimeEntry]) -> None:
        if stable is None or not self.registry.has_capability("jebbs.plantuml"):
            return
        origin = self.store.get(CONFIG_KEY_PLANTUML_JAVA)
        if not origin or not Path(origin).is_file():
            new_path = str(java_path(stable.path, self.env))
            await self.store.update_if_changed(CONFIG_KEY_PLANTUML_JAVA, new_path)

    # ================================================================
    #  BUILD TOOLS
    # ================================================================

    async def update_gradle_java_home(self, default: RuntimeEntry) -> None:
        """Gradle daemon JDK: fix a broken value, set the default if unset."""
        if not self.registry.has_capability(GRADLE_EXTENSION_ID):
            return
        origin = self.store.get(CONFIG_KEY_GRADLE_JAVA_HOME)
        new_path = await self._fix(origin, default.path) if origin else default.path
        if new_path != origin:
            if await self.store.update_if_changed(CONFIG_KEY_GRADLE_JAVA_HOME, new_path):
                logger.info("Needs Reload: Restart Gradle Daemon")
                self.java_config.needs_reload = True

    async def update_maven_custom_env(self, default: Optional[RuntimeEntry]) -> None:
        """``maven.terminal.customEnv``: JAVA_HOME element (and ZDOTDIR on macOS)."""
        custom_env = self.store.get(CONFIG_KEY_MAVEN_CUSTOM_ENV) or []
        if not isinstance(custom_env, list):
            logger.warning("Ignoring malformed %s", CONFIG_KEY_MAVEN_CUSTOM_ENV)
            return
        original = copy.deepcopy(custom_env)
        java_home_element = next(
            (e for e in custom_env if isinstance(e, dict) and e.get("environmentVariable") == "JAVA_HOME"),
            None,
        )
        origin = java_home_element.get("value") if java_home_element else None

        if self.env.is_windows:
            # A JAVA_HOME left over from WSL is not a valid Windows path
            if origin and not await self._is_valid(origin):
                custom_env.remove(java_home_element)
        elif default:
            if java_home_element is not None:
                fixed_or_default = await self._fix(origin, default.path)
                if fixed_or_default != origin:  # Also fills an element without a value
                    java_home_element["value"] = fixed_or_default
            else:
                custom_env.append({"environmentVariable": "JAVA_HOME", "value": default.path})
            if self.env.is_mac and not any(
                isinstance(e, dict) and e.get("environmentVariable") == "ZDOTDIR" for e in custom_env
            ):
                custom_env.append({
                    "environmentVariable": "ZDOTDIR",
                    "value": str(self.env.resources_dir),
                })
        if custom_env != original:
            await self.store.update_if_changed(CONFIG_KEY_MAVEN_CUSTOM_ENV, custom_env)

    def _tool_bin_dirs(self) -> List[str]:
        """Maven and Gradle bin directories that are configured in settings."""
        dirs: List[str] = []
        mvn = self.store.get(CONFIG_KEY_MAVEN_EXE_PATH)
        if mvn:
            dirs.append(os.path.dirname(mvn))
        gradle_home = self.store.get(CONFIG_KEY_GRADLE_HOME)
        if gradle_home:
            dirs.append(os.path.join(gradle_home, "bin"))
        return dirs

    # ================================================================
    #  TERMINAL
    # ================================================================

    @property
    def os_config_name(self) -> str:
        return self.env.os_config_name

    async def update_terminal_env(self, default: RuntimeEntry) -> None:
        """Windows terminal env: only JAVA_HOME and PATH are managed."""
        key = f"terminal.integrated.env.{self.os_config_name}"
        terminal_env = self.store.get(key) or {}
        if not isinstance(terminal_env, dict):
            logger.warning("Ignoring malformed %s", key)
            return
        original = copy.deepcopy(terminal_env)
        java_home = await self._fix(terminal_env.get("JAVA_HOME"), default.path)
        path_parts = [os.path.join(java_home, "bin"), *self._tool_bin_dirs(), "${env:PATH}"]
        terminal_env["PATH"] = self.env.path_delimiter.join(path_parts)
        terminal_env["JAVA_HOME"] = java_home
        if terminal_env != original:
            await self.store.update_if_changed(key, terminal_env)

    async def update_terminal_profiles(self, runtimes: RuntimeList) -> None:
        """
        One managed terminal profile per runtime.

        User profiles are kept unless they look like a stale runtime
        profile (an ``env.JAVA_HOME`` that is no longer a JDK). Within a
        managed profile only ``overrideName``, ``path``, ``args`` and
        ``env`` are owned; other fields survive.
        """
        key = f"terminal.integrated.profiles.{self.os_config_name}"
        profiles_old = self.store.get_definition(key) or {}
        if not isinstance(profiles_old, dict):
            logger.warning("Ignoring malformed %s", key)
            return
        profiles_new: Dict[str, Any] = copy.deepcopy(profiles_old)

        for profile_name in list(profiles_new):
            if runtimes.find_by_name(profile_name):
                continue
            profile = profiles_new[profile_name]
            env = profile.get("env") if isinstance(profile, dict) else None
            java_home = env.get("JAVA_HOME") if isinstance(env, dict) else None
            if isinstance(java_home, str) and java_home and not await self._is_valid(java_home):
                logger.info("Remove terminal profile %s (invalid %s)", profile_name, java_home)
                del profiles_new[profile_name]

        resources_dir = str(self.env.resources_dir)
        for runtime in runtimes:
            previous = profiles_old.get(runtime.name)
            profile = copy.deepcopy(previous) if isinstance(previous, dict) else {}
            profile["overrideName"] = True
            profile["env"] = {}
            if self.env.is_windows:
                profile.setdefault("path", "cmd")  # powershell, pwsh are user choices
                profile["env"]["PATH"] = self.env.path_delimiter.join(
                    [os.path.join(runtime.path, "bin"), "${env:PATH}"]
                )
            elif self.env.is_mac:
                profile["path"] = "zsh"
                profile["env"]["ZDOTDIR"] = resources_dir
            else:
                profile["path"] = "bash"
                profile["args"] = ["--rcfile", os.path.join(resources_dir, ".bashrc")]
            profile["env"]["JAVA_HOME"] = runtime.path
            profiles_new[runtime.name] = profile

        sorted_new = {name: profiles_new[name] for name in sorted(profiles_new)}
        if sorted_new != profiles_old:  # Key order alone is not a change
            await self.store.update_if_changed(key, sorted_new)

    def ensure_shell_resources(self) -> List[Path]:
        """
        Write the rc files used by managed profiles.

        Returns:
            Files that were (re)written
        """
        resources_dir = self.env.resources_dir
        written: List[Path] = []
        for file_name, content in ((".bashrc", BASHRC), (".zshrc", ZSHRC)):
            target = resources_dir / file_name
            try:
                if target.is_file() and target.read_text(encoding="utf-8") == content:
                    continue
                resources_dir.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
                logger.info("Wrote shell resource %s", target)
                written.append(target)
            except OSError as exc:
                logger.error("Could not write %s: %s", target, exc)
        return written

    # ================================================================
    #  EDITOR DEFAULTS
    # ================================================================

    async def _set_if_undefined(self, key: str, value: Any, extension_id: Optional[str] = None) -> None:
        if extension_id and not self.registry.has_capability(extension_id):
            return
        if self.store.get_definition(key) is None:
            await self.store.update_if_changed(key, value)

    async def apply_defaults(self) -> None:
        """Set editor, terminal and Java defaults the user has not defined."""
        # Editor
        await self._set_if_undefined("editor.codeActionsOnSave", {"source.organizeImports": "explicit"})
        await self._set_if_undefined("editor.linkedEditing", True)
        await self._set_if_undefined("editor.minimap.enabled", False)
        await self._set_if_undefined("editor.rulers", [
            {"column": 80, "color": "#00FF0010"},
            {"column": 100, "color": "#BDB76B15"},
            {"column": 120, "color": "#FA807219"},
        ])
        await self._set_if_undefined("editor.unicodeHighlight.includeComments", True)
        lang = (self.env.getenv("LANG", "en") or "en")[:2]
        await self._set_if_undefined("emmet.variables", {"lang": lang})

        # Workbench
        await self._set_if_undefined("workbench.colorCustomizations", {
            "[Default Dark Modern]": {
                "tab.activeBorderTop": "#00FF00",
                "tab.unfocusedActiveBorderTop": "#00FF0088",
                "textCodeBlock.background": "#00000055",
            },
            "editor.wordHighlightStrongBorder": "#FF6347",
            "editor.wordHighlightBorder": "#FFD700",
            "editor.selectionHighlightBorder": "#A9A9A9",
        })
        await self._set_if_undefined("workbench.editor.revealIfOpen", True)
        await self._set_if_undefined("workbench.tree.indent", 20)
        if self.env.is_windows:
            await self._set_if_undefined("files.eol", "\n")
            await self._set_if_undefined("[bat]", {"files.eol": "\r\n"})

        # Terminal
        await self._set_if_undefined("terminal.integrated.enablePersistentSessions", False)
        await self._set_if_undefined("terminal.integrated.tabs.hideCondition", "never")
        if self.env.is_windows:
            await self._set_if_undefined("terminal.integrated.defaultProfile.windows", "Command Prompt")

        # Java
        await self._set_if_undefined("java.configuration.updateBuildConfiguration", "automatic")
        await self._set_if_undefined("java.debug.settings.hotCodeReplace", "auto")
        await self._set_if_undefined("java.sources.organizeImports.staticStarThreshold", 1)

        # Extension specific
        await self._set_if_undefined("cSpell.diagnosticLevel", "Hint", "streetsidesoftware.code-spell-checker")
        await self._set_if_undefined("trailing-spaces.includeEmptyLines", False, "shardulm94.trailing-spaces")
        await self._set_if_undefined("thunder-client.requestLayout", "Top/Bottom", "rangav.vscode-thunder-client")
