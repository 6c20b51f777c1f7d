"""
extensions.py
=============
Capability queries against the installed editor extensions.

An extensions directory holds one folder per installed extension
(``publisher.name-1.2.3``) with a ``package.json`` manifest. The registry
answers:
  - has_capability(id)            → is the extension installed?
  - get_supported_version_names() → runtime names the Java language
                                    server accepts (``JavaSE-17``, ...)
  - has_embedded_jre(id)          → does the extension bundle its own JRE?
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

LANGUAGE_SERVER_EXTENSION_ID = "redhat.java"
CONFIG_KEY_RUNTIMES = "java.configuration.runtimes"


class ExtensionRegistry:
    """
    Index of installed extensions keyed by lower-case ``publisher.name``.

    Args:
        extensions_dir: Directory containing extension folders
    """

    def __init__(self, extensions_dir: Optional[str | Path]) -> None:
        self.extensions_dir = Path(extensions_dir) if extensions_dir else None
        self._index: Optional[Dict[str, tuple[Path, Dict[str, Any]]]] = None

    # ================================================================
    #  INDEX
    # ================================================================

    def _load_index(self) -> Dict[str, tuple[Path, Dict[str, Any]]]:
        if self._index is not None:
            return self._index
        index: Dict[str, tuple[Path, Dict[str, Any]]] = {}
        if self.extensions_dir and self.extensions_dir.is_dir():
            for child in sorted(self.extensions_dir.iterdir()):
                manifest = child / "package.json"
                if not manifest.is_file():
                    continue
                try:
                    data = json.loads(manifest.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as exc:
                    logger.debug("Skipping extension %s: %s", child.name, exc)
                    continue
                publisher = data.get("publisher", "")
                name = data.get("name", "")
                if publisher and name:
                    # Later (sorted) folders are newer versions of the same id
                    index[f"{publisher}.{name}".lower()] = (child, data)
        logger.debug("Indexed %d extensions in %s", len(index), self.extensions_dir)
        self._index = index
        return index

    def get_manifest(self, extension_id: str) -> Optional[Dict[str, Any]]:
        entry = self._load_index().get(extension_id.lower())
        return entry[1] if entry else None

    # ================================================================
    #  CAPABILITIES
    # ================================================================

    def has_capability(self, extension_id: str) -> bool:
        return extension_id.lower() in self._load_index()

    def has_embedded_jre(self, extension_id: str) -> bool:
        entry = self._load_index().get(extension_id.lower())
        return bool(entry) and (entry[0] / "jre").is_dir()

    def get_supported_version_names(self) -> List[str]:
        """
        Return runtime names declared by the language server's settings schema.

        Empty when the extension or its schema is missing, which callers
        treat as "no allow-list".
        """
        manifest = self.get_manifest(LANGUAGE_SERVER_EXTENSION_ID)
        configuration = (manifest or {}).get("contributes", {}).get("configuration", [])
        sections = configuration if isinstance(configuration, list) else [configuration]
        for section in sections:
            prop = section.get("properties", {}).get(CONFIG_KEY_RUNTIMES)
            if not prop:
                continue
            names = prop.get("items", {}).get("properties", {}).get("name", {}).get("enum", [])
            if names:
                return list(names)
        logger.warning("No supported runtime names from %s", LANGUAGE_SERVER_EXTENSION_ID)
        return []
