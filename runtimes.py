"""
runtimes.py
===========
The persisted Java runtime list and its reconciliation with scan results.

The list lives under ``java.configuration.runtimes`` as
``[{"name": "JavaSE-17", "path": "/opt/jdk-17", "default": true}, ...]``.

Reconciliation rules (in order):
  1. Drop entries whose name the language server does not support
  2. Repair or drop entries whose path is not a valid JDK home
  3. Fold in the newest detection per major version; a user-installed
     entry is only replaced by a strictly newer detection, an
     auto-downloaded entry is left alone
  4. Mark the preferred LTS runtime as default if nothing is default
  5. Compare sorted-by-name, so reordering never causes a write

All passes that mutate the list run under one asyncio lock.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from host_env import HostEnvironment
from jdk_probe import DetectedJdk, find_by_path, fix_path, is_newer
from settings_store import SettingsStore

logger = logging.getLogger(__name__)

CONFIG_KEY_RUNTIMES = "java.configuration.runtimes"

_NAME_RE = re.compile(r"^J(?:ava|2)SE-(?:1\.)?(\d+)$")


# ──────────────────────────────────────────────
#  Names
# ──────────────────────────────────────────────

def name_of(major_version: int) -> str:
    """Runtime name for a major version: 5 → J2SE-1.5, 8 → JavaSE-1.8, 17 → JavaSE-17."""
    if major_version <= 5:
        return f"J2SE-1.{major_version}"
    if major_version <= 8:
        return f"JavaSE-1.{major_version}"
    return f"JavaSE-{major_version}"


def version_of(runtime_name: str) -> Optional[int]:
    """Major version of a runtime name, or None if it is not one."""
    match = _NAME_RE.match(runtime_name or "")
    return int(match.group(1)) if match else None


# ──────────────────────────────────────────────
#  RuntimeEntry / RuntimeList
# ──────────────────────────────────────────────

@dataclass
class RuntimeEntry:
    """One configured JDK: version-tagged name and home path."""

    name: str
    path: str
    default: bool = False

    @property
    def version(self) -> Optional[int]:
        return version_of(self.name)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "path": self.path}
        if self.default:
            data["default"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuntimeEntry":
        return cls(
            name=str(data.get("name", "")),
            path=str(data.get("path", "")),
            default=bool(data.get("default", False)),
        )


class RuntimeList(List[RuntimeEntry]):
    """List of RuntimeEntry with lookups by name, version and default flag."""

    def find_by_name(self, name: str) -> Optional[RuntimeEntry]:
        return next((r for r in self if r.name == name), None)

    def find_by_version(self, major_version: Optional[int]) -> Optional[RuntimeEntry]:
        if major_version is None:
            return None
        return self.find_by_name(name_of(major_version))

    def find_default(self) -> Optional[RuntimeEntry]:
        return next((r for r in self if r.default), None)

    def sort_by_name(self) -> "RuntimeList":
        self.sort(key=lambda r: r.name)
        return self

    def clone(self) -> "RuntimeList":
        return RuntimeList(copy.deepcopy(list(self)))

    def to_settings(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self]

    @classmethod
    def from_settings(cls, value: Any) -> "RuntimeList":
        if not isinstance(value, list):
            return cls()
        return cls(RuntimeEntry.from_dict(d) for d in value if isinstance(d, dict))


# ──────────────────────────────────────────────
#  Reconciliation
# ──────────────────────────────────────────────

@dataclass
class ReconcileResult:
    """What one reconciliation pass changed."""

    runtimes: RuntimeList
    removed: List[str] = field(default_factory=list)
    fixed: List[Tuple[str, str]] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    added: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.removed or self.fixed or self.updated or self.added)


class RuntimeReconciler:
    """
    Merges detections into the runtime list and writes it back.

    Args:
        store: Settings store holding ``java.configuration.runtimes``
        env:   Host environment (managed storage root, platform)
    """

    def __init__(self, store: SettingsStore, env: HostEnvironment) -> None:
        self.store = store
        self.env = env
        self.lock = asyncio.Lock()

    def load(self) -> RuntimeList:
        return RuntimeList.from_settings(self.store.get(CONFIG_KEY_RUNTIMES))

    # ================================================================
    #  RULES 1-2: PRUNE
    # ================================================================

    def _prune(
        self,
        runtimes: RuntimeList,
        supported_names: Iterable[str],
        result: ReconcileResult,
    ) -> None:
        supported = list(supported_names)
        for runtime in list(runtimes):
            if supported and runtime.name not in supported:
                logger.info("Remove unsupported name %s", runtime.name)
                runtimes.remove(runtime)
                result.removed.append(runtime.name)
                continue
            fixed = fix_path(runtime.path, self.env)
            if not fixed:
                logger.info("Remove invalid path %s", runtime.path)
                runtimes.remove(runtime)
                result.removed.append(runtime.name)
                continue
            if fixed != runtime.path:
                logger.info("Fix path\n   %s\n-> %s", runtime.path, fixed)
                result.fixed.append((runtime.path, fixed))
                runtime.path = fixed
            # Mismatches between a manually set name and its path are kept

    # ================================================================
    #  RULE 3: MERGE DETECTIONS
    # ================================================================

    def _merge(
        self,
        runtimes: RuntimeList,
        detected: Dict[int, DetectedJdk],
        result: ReconcileResult,
    ) -> None:
        for major in sorted(detected):
            jdk = detected[major]
            name = name_of(major)
            runtime = runtimes.find_by_name(name)
            if runtime is None:
                logger.info("Add runtime %s %s", name, jdk.home_path)
                runtimes.append(RuntimeEntry(name=name, path=jdk.home_path))
                result.added.append(name)
                continue
            if not self.env.is_user_installed(runtime.path):
                continue  # Keep auto-downloaded
            if not jdk.full_version:
                continue  # Auto-download fallback never replaces a user install
            configured = find_by_path(runtime.path, self.env)
            if configured and is_newer(jdk.full_version, configured.full_version):
                logger.info(
                    "Update runtime %s %s (%s) -> %s (%s)",
                    name, runtime.path, configured.full_version,
                    jdk.home_path, jdk.full_version,
                )
                runtime.path = jdk.home_path
                result.updated.append(name)
            # else keep: detection is same or older

    async def reconcile(
        self,
        runtimes: RuntimeList,
        detected: Dict[int, DetectedJdk],
        supported_names: Iterable[str] = (),
    ) -> ReconcileResult:
        """
        Apply rules 1-3 to ``runtimes`` in place.

        Pruned or repaired entries are written immediately; removals are
        awaited so the host never reads a path that was just dropped.
        """
        async with self.lock:
            result = ReconcileResult(runtimes=runtimes)
            await asyncio.to_thread(self._prune, runtimes, supported_names, result)
            if result.removed:
                await self.store.write_awaited(
                    CONFIG_KEY_RUNTIMES, runtimes.clone().sort_by_name().to_settings()
                )
            elif result.fixed:
                self.store.write_async(
                    CONFIG_KEY_RUNTIMES, runtimes.clone().sort_by_name().to_settings()
                )
            await asyncio.to_thread(self._merge, runtimes, detected, result)
            return result

    # ================================================================
    #  ACQUISITION FEEDBACK
    # ================================================================

    async def fold_installed(self, runtimes: RuntimeList, major_version: int, home_path: str) -> bool:
        """
        Point the runtime for ``major_version`` at a freshly installed home.

        Returns:
            True if the list changed
        """
        async with self.lock:
            name = name_of(major_version)
            runtime = runtimes.find_by_name(name)
            if runtime is None:
                logger.info("Add runtime %s %s (auto-downloaded)", name, home_path)
                runtimes.append(RuntimeEntry(name=name, path=home_path))
                return True
            if runtime.path == home_path:
                return False
            if self.env.is_user_installed(runtime.path) and find_by_path(runtime.path, self.env):
                return False  # A valid user install always wins
            logger.info("Update runtime %s %s -> %s", name, runtime.path, home_path)
            runtime.path = home_path
            return True

    async def user_runtime(self, runtimes: RuntimeList, major_version: int) -> Optional[RuntimeEntry]:
        """The valid, user-installed runtime for ``major_version``, if any."""
        async with self.lock:
            runtime = runtimes.find_by_version(major_version)
            if runtime and self.env.is_user_installed(runtime.path) and find_by_path(runtime.path, self.env):
                return runtime
            return None

    # ================================================================
    #  RULES 4-5: DEFAULT + COMMIT
    # ================================================================

    @staticmethod
    def apply_default(runtimes: RuntimeList, preferred_version: Optional[int]) -> bool:
        """
        Ensure at most one default; mark ``preferred_version`` if none is set.

        Returns:
            True if any flag changed
        """
        changed = False
        defaults = [r for r in runtimes if r.default]
        for extra in defaults[1:]:
            logger.info("Clear duplicate default %s", extra.name)
            extra.default = False
            changed = True
        if not defaults:
            preferred = runtimes.find_by_version(preferred_version)
            if preferred:
                logger.info("Set default runtime %s", preferred.name)
                preferred.default = True
                changed = True
        return changed

    async def commit(self, runtimes: RuntimeList) -> bool:
        """Sort by name and write back if the stored entries differ (order ignored)."""
        async with self.lock:
            runtimes.sort_by_name()
            stored = RuntimeList.from_settings(self.store.get_definition(CONFIG_KEY_RUNTIMES))
            if stored.sort_by_name().to_settings() == runtimes.to_settings():
                return False  # Same entries, stored in another order
            return await self.store.update_if_changed(CONFIG_KEY_RUNTIMES, runtimes.to_settings())
