#!/usr/bin/env python3
"""
main.py – JDK Auto-Configuration CLI
====================================
Entry point: scan, reconcile and download JDKs / build tools, then
update the editor's user settings. Prints a summary with rich tables.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from auto_config import AutoConfigWorkflow, WorkflowResult
from config import DEFAULT_CONFIG_FILE, AutoConfigOptions, load_options
from host_env import HostEnvironment
from progress import ConsoleProgress
from settings_store import SettingsError

logger = logging.getLogger("jdk_autoconfig")


# ──────────────────────────────────────────────
#  CLI
# ──────────────────────────────────────────────

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="☕ JDK Auto – detect, download and configure JDKs for VS Code",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("--config", default=DEFAULT_CONFIG_FILE, help="Path to jdkauto.json")
    p.add_argument("--settings", default=None, help="VS Code user settings.json")
    p.add_argument("--extensions-dir", default=None, help="VS Code extensions directory")
    p.add_argument("--storage-dir", default=None, help="Managed storage root for downloads")
    p.add_argument("--no-download", action="store_true", help="Scan and configure only")
    p.add_argument("--no-defaults", action="store_true", help="Skip editor default settings")
    p.add_argument("--dry-run", action="store_true", help="Do not save settings.json")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def apply_args(options: AutoConfigOptions, args: argparse.Namespace) -> AutoConfigOptions:
    """CLI flags override the options file."""
    if args.settings:
        options.settings_path = Path(args.settings).expanduser()
    if args.extensions_dir:
        options.extensions_dir = Path(args.extensions_dir).expanduser()
    if args.storage_dir:
        options.storage_dir = Path(args.storage_dir).expanduser()
    if args.no_download:
        options.download = False
    if args.no_defaults:
        options.apply_defaults = False
    if args.dry_run:
        options.dry_run = True
    return options


# ──────────────────────────────────────────────
#  Logging
# ──────────────────────────────────────────────

def setup_logging(log_dir: Path, verbose: bool = False) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_dir / "autoconfig.log", encoding="utf-8"),
            logging.StreamHandler(sys.stdout),
        ],
    )


# ──────────────────────────────────────────────
#  Output
# ──────────────────────────────────────────────

def print_result(console: Console, result: WorkflowResult) -> None:
    t = Table(title="Java Runtimes")
    t.add_column("Name", style="cyan")
    t.add_column("Path", style="white")
    t.add_column("Default", justify="center")
    for runtime in result.runtimes:
        t.add_row(runtime.name, runtime.path, "✓" if runtime.default else "")
    console.print(t)

    if result.acquisitions:
        t = Table(title="Downloads")
        t.add_column("Tool", style="cyan")
        t.add_column("State")
        t.add_column("Version")
        t.add_column("Path", style="dim")
        for acq in result.acquisitions:
            state = acq.state.value + (" (cached)" if acq.from_cache else "")
            style = "green" if acq.success else "red"
            t.add_row(acq.tool, f"[{style}]{state}[/]", acq.version, acq.path or acq.error or "")
        console.print(t)

    if result.written_keys:
        t = Table(title="Updated Settings")
        t.add_column("Key", style="cyan")
        for key in result.written_keys:
            t.add_row(key)
        console.print(t)
    else:
        console.print("[dim]Settings already up to date.[/]")

    if result.needs_reload:
        console.print("[bold yellow]Reload the editor to restart the Gradle daemon.[/]")
    for error in result.errors:
        console.print(f"[red]✗[/] {error}")


# ──────────────────────────────────────────────
#  Entry Point
# ──────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    options = apply_args(load_options(args.config), args)
    env = HostEnvironment(storage_dir=options.storage_dir)
    options.resolve(env)
    setup_logging(Path(options.log_dir), args.verbose)
    logger.debug("Options: %s", options.to_dict())

    console = Console()
    console.print("\n[bold green]☕ JDK Auto[/]\n")
    try:
        workflow = AutoConfigWorkflow(options, env=env, progress=ConsoleProgress())
        result = asyncio.run(workflow.run())
    except SettingsError as exc:
        logger.error("%s", exc)
        console.print(f"[bold red]✗[/] {exc}")
        return 1
    print_result(console, result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
