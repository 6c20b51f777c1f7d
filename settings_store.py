"""
settings_store.py
=================
User settings storage backed by a VS Code style ``settings.json``.

The file is a flat JSON object of dotted keys
(``"java.configuration.runtimes": [...]``). Values are kept as plain
JSON-compatible ``dict`` / ``list`` / scalars; every read returns a deep
copy, so callers can mutate freely and compare with ``==``.

Write modes:
  - write_async(key, value)   → in-memory update now, disk save scheduled
  - write_awaited(key, value) → in-memory update, disk save awaited
  - update_if_changed(...)    → either of the above, only when the
                                 stored value differs structurally

A value of ``None`` (or an empty list) removes the key.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
#  Errors
# ──────────────────────────────────────────────

class SettingsError(Exception):
    """Base error for the settings store."""


class SettingsParseError(SettingsError):
    """The settings file exists but is not a JSON object."""


def _normalize(value: Any) -> Any:
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return None
    if value is None:
        return None
    # Round-trip through JSON so tuples, nested copies etc. compare as stored
    return json.loads(json.dumps(value))


# ──────────────────────────────────────────────
#  SettingsStore
# ──────────────────────────────────────────────

class SettingsStore:
    """
    Read and update user settings.

    Args:
        settings_path: Path to settings.json (created on first write)
        defaults:      Extension-provided defaults returned by ``get`` when
                       the user has no value of their own
        dry_run:       Record updates in memory but never write the file
    """

    def __init__(
        self,
        settings_path: str | Path,
        defaults: Optional[Mapping[str, Any]] = None,
        dry_run: bool = False,
    ) -> None:
        self.settings_path = Path(settings_path)
        self.defaults: Dict[str, Any] = dict(defaults or {})
        self.dry_run = dry_run
        self.history: List[Tuple[str, Any]] = []
        self._values: Dict[str, Any] = {}
        self._pending: Set[asyncio.Task] = set()
        self._save_lock: Optional[asyncio.Lock] = None
        self._load()

    # ================================================================
    #  LOAD / SAVE
    # ================================================================

    def _load(self) -> None:
        if not self.settings_path.exists():
            logger.info("Settings file not found, starting empty: %s", self.settings_path)
            return
        try:
            with open(self.settings_path, "r", encoding="utf-8") as fh:
                text = fh.read()
            data = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as exc:
            raise SettingsParseError(f"Cannot parse {self.settings_path}: {exc}") from exc
        except OSError as exc:
            raise SettingsError(f"Cannot read {self.settings_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise SettingsParseError(f"{self.settings_path} is not a JSON object")
        self._values = data
        logger.debug("Loaded %d settings from %s", len(data), self.settings_path)

    def _save(self) -> None:
        if self.dry_run:
            logger.debug("Dry run: not saving %s", self.settings_path)
            return
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        snapshot = copy.deepcopy(self._values)
        with open(self.settings_path, "w", encoding="utf-8") as fh:
            json.dump(snapshot, fh, indent=4, ensure_ascii=False)
            fh.write("\n")

    async def _save_quietly(self) -> None:
        if self._save_lock is None:
            self._save_lock = asyncio.Lock()
        async with self._save_lock:
            try:
                await asyncio.to_thread(self._save)
            except OSError as exc:
                logger.error("Could not save %s: %s", self.settings_path, exc)

    # ================================================================
    #  READ
    # ================================================================

    def get(self, key: str) -> Any:
        """User value, else extension default, else None."""
        if key in self._values:
            return copy.deepcopy(self._values[key])
        return copy.deepcopy(self.defaults.get(key))

    def get_definition(self, key: str) -> Any:
        """Explicit user value only (ignores extension defaults)."""
        return copy.deepcopy(self._values.get(key))

    @property
    def written_keys(self) -> List[str]:
        """Keys written during this session, in first-write order."""
        seen: List[str] = []
        for key, _ in self.history:
            if key not in seen:
                seen.append(key)
        return seen

    # ================================================================
    #  WRITE
    # ================================================================

    def _apply(self, key: str, value: Any) -> None:
        value = _normalize(value)
        if value is None:
            logger.info("Remove settings: %s", key)
            self._values.pop(key, None)
        else:
            shown = "" if isinstance(value, (dict, list)) else value
            logger.info("Update settings: %s %s", key, shown)
            self._values[key] = value
        self.history.append((key, copy.deepcopy(value)))

    def write_async(self, key: str, value: Any) -> None:
        """Update now; persist in the background (drained by ``flush``)."""
        self._apply(key, value)
        task = asyncio.get_running_loop().create_task(self._save_quietly())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def write_awaited(self, key: str, value: Any) -> None:
        """Update and wait until the file is written."""
        self._apply(key, value)
        await self._save_quietly()

    async def remove(self, key: str) -> None:
        await self.write_awaited(key, None)

    async def update_if_changed(self, key: str, value: Any, awaited: bool = False) -> bool:
        """
        Write ``value`` only if it differs from the stored user value.

        Returns:
            True if a write was issued
        """
        if _normalize(value) == _normalize(self.get_definition(key)):
            return False
        if awaited:
            await self.write_awaited(key, value)
        else:
            self.write_async(key, value)
        return True

    async def flush(self) -> None:
        """Wait for all background saves."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
