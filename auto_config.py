"""
auto_config.py
==============
One complete auto-configuration run.

    load runtimes ─┬─ scan → reconcile → JDK acquisitions ─┬─ default + commit
                   └─ Gradle / Maven acquisitions ──────────┘
                                                            → synthesize → defaults → flush

JDK acquisitions wait for the scan so a JDK the user already has is
never downloaded; build-tool acquisitions do not depend on the scan and
run alongside it. Every fold into the runtime list goes through the
reconciler lock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import aiohttp

from acquisition import (
    AcquisitionCoordinator, AcquisitionResult, GradleTool, JdkTool, ManagedTool, MavenTool,
)
from config import AutoConfigOptions
from config_synthesizer import ConfigSynthesizer, JavaConfig
from extensions import LANGUAGE_SERVER_EXTENSION_ID, ExtensionRegistry
from host_env import HostEnvironment
from jdk_scanner import JdkScanner, ScanReport
from progress import NullProgress
from runtimes import ReconcileResult, RuntimeList, RuntimeReconciler
from settings_store import SettingsStore

logger = logging.getLogger(__name__)


@dataclass
class WorkflowResult:
    """Everything one run found and changed."""

    runtimes: RuntimeList = field(default_factory=RuntimeList)
    java_config: Optional[JavaConfig] = None
    scan: Optional[ScanReport] = None
    reconcile: Optional[ReconcileResult] = None
    acquisitions: List[AcquisitionResult] = field(default_factory=list)
    written_keys: List[str] = field(default_factory=list)
    needs_reload: bool = False
    errors: List[str] = field(default_factory=list)


class AutoConfigWorkflow:
    """
    Wires scanner, reconciler, acquisitions and synthesizer together.

    Args:
        options:  Resolved run options
        env:      Host environment (defaults to the current machine)
        progress: Progress sink
        session:  aiohttp session to reuse; one is created when None
    """

    def __init__(
        self,
        options: AutoConfigOptions,
        env: Optional[HostEnvironment] = None,
        progress: Optional[NullProgress] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.env = env or HostEnvironment(storage_dir=options.storage_dir)
        self.options = options.resolve(self.env)
        self.progress = progress or NullProgress()
        self.session = session

        # Raises SettingsParseError before anything is written
        self.store = SettingsStore(self.options.settings_path, dry_run=self.options.dry_run)
        self.registry = ExtensionRegistry(self.options.extensions_dir)
        self.scanner = JdkScanner(self.env)
        self.reconciler = RuntimeReconciler(self.store, self.env)

    def build_java_config(self) -> JavaConfig:
        return JavaConfig.build(
            self.options.lts_versions,
            self.options.stable_lts_version,
            self.registry.get_supported_version_names(),
            embedded_jre=self.registry.has_embedded_jre(LANGUAGE_SERVER_EXTENSION_ID),
        )

    # ================================================================
    #  RUN
    # ================================================================

    async def run(self) -> WorkflowResult:
        logger.info("Auto-configuration START %s", self.options.settings_path)
        result = WorkflowResult()
        java_config = self.build_java_config()
        result.java_config = java_config
        runtimes = self.reconciler.load()
        result.runtimes = runtimes

        if self.options.download:
            if self.session is not None:
                await self._scan_and_acquire(self.session, runtimes, java_config, result)
            else:
                async with aiohttp.ClientSession() as session:
                    await self._scan_and_acquire(session, runtimes, java_config, result)
        else:
            await self._scan_and_reconcile(runtimes, java_config, result)

        RuntimeReconciler.apply_default(runtimes, java_config.latest_lts_version)
        await self.reconciler.commit(runtimes)

        synthesizer = ConfigSynthesizer(self.store, self.env, self.registry, java_config)
        result.needs_reload = await synthesizer.synthesize(runtimes)
        if self.options.apply_defaults:
            await synthesizer.guarded("editor defaults", synthesizer.apply_defaults())

        await self.store.flush()
        result.written_keys = self.store.written_keys
        result.errors.extend(synthesizer.errors)
        result.errors.extend(self.progress.errors)
        logger.info(
            "Auto-configuration END (%d runtimes, %d keys written)",
            len(runtimes), len(result.written_keys),
        )
        return result

    async def _scan_and_reconcile(
        self, runtimes: RuntimeList, java_config: JavaConfig, result: WorkflowResult,
    ) -> None:
        result.scan = await self.scanner.scan(java_config.scan_versions)
        for name, error in result.scan.failures.items():
            result.errors.append(f"Scan strategy {name} failed: {error}")
        result.reconcile = await self.reconciler.reconcile(
            runtimes, result.scan.latest, java_config.supported_names,
        )

    async def _scan_and_acquire(
        self,
        session: aiohttp.ClientSession,
        runtimes: RuntimeList,
        java_config: JavaConfig,
        result: WorkflowResult,
    ) -> None:
        coordinator = AcquisitionCoordinator(session, progress=self.progress)

        async def jdk_branch() -> List[AcquisitionResult]:
            await self._scan_and_reconcile(runtimes, java_config, result)
            tools: List[ManagedTool] = [
                JdkTool(self.env, major, self.reconciler, runtimes)
                for major in java_config.download_lts_versions
            ]
            return await coordinator.acquire_all(tools)

        build_tools: List[ManagedTool] = []
        if self.options.download_gradle:
            build_tools.append(GradleTool(self.env, self.store))
        if self.options.download_maven:
            build_tools.append(MavenTool(self.env, self.store))

        jdk_results, tool_results = await asyncio.gather(
            jdk_branch(), coordinator.acquire_all(build_tools),
        )
        result.acquisitions = [*jdk_results, *tool_results]
