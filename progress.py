"""
progress.py
===========
Progress and notification sinks for long-running work.

``report`` carries incremental status ("Downloading... JDK 21 (40%)");
``error`` is the one channel the operator is expected to act on
(network failures).
"""

from __future__ import annotations

import logging
from typing import List

from rich.console import Console

logger = logging.getLogger(__name__)


class NullProgress:
    """Logs progress instead of displaying it."""

    def __init__(self) -> None:
        self.messages: List[str] = []
        self.errors: List[str] = []

    def report(self, message: str) -> None:
        self.messages.append(message)
        logger.debug("Progress: %s", message)

    def error(self, message: str) -> None:
        self.errors.append(message)
        logger.error(message)


class ConsoleProgress(NullProgress):
    """Prints progress and errors to a rich console."""

    def __init__(self, console: Console | None = None) -> None:
        super().__init__()
        self.console = console or Console(stderr=True)

    def report(self, message: str) -> None:
        super().report(message)
        self.console.print(f"[dim]JDK Auto:[/] {message}")

    def error(self, message: str) -> None:
        super().error(message)
        self.console.print(f"[bold red]✗ JDK Auto:[/] {message}")
