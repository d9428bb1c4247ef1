"""Wires the run orchestration components around one registry and event bus."""

from __future__ import annotations

import logging

from appraise.config import Settings, get_settings
from appraise.core.archive import ArchiveAssembler
from appraise.core.executor import TestRunExecutor
from appraise.core.log_stream import LogStreamGateway
from appraise.core.process import ProcessLauncher, ProcessRegistry
from appraise.core.report_parser import ReportIngestor
from appraise.core.store import RunStore

logger = logging.getLogger(__name__)


class RunOrchestrator:
    """Owns the process registry and launcher shared by every request.

    Created once per application in the lifespan handler and exposed through
    ``app.state.orchestrator``.
    """

    def __init__(
        self,
        store: RunStore,
        settings: Settings | None = None,
        *,
        launcher: ProcessLauncher | None = None,
        registry: ProcessRegistry | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.launcher = launcher or ProcessLauncher()
        self.registry = registry or ProcessRegistry()
        self.executor = TestRunExecutor(
            self.launcher,
            self.registry,
            store,
            self.settings,
            ReportIngestor(),
        )
        self.gateway = LogStreamGateway(
            self.registry,
            self.launcher.events,
            store.get_status,
            registration_timeout=self.settings.registration_timeout_seconds,
            poll_interval=self.settings.registration_poll_interval_seconds,
            close_grace=self.settings.stream_close_grace_seconds,
        )
        self.archives = ArchiveAssembler(store.get_artifacts)

    async def recover(self) -> list[str]:
        """Cancel runs a previous server process left active."""
        return await self.store.recover_orphaned_runs()

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Terminate live children and let their runs be finalized."""
        live = self.launcher.live_processes()
        if live:
            logger.info("orchestrator: terminating %d live process(es)", len(live))
        await self.launcher.shutdown(timeout=timeout)
        await self.executor.wait_idle()
        self.registry.clear()
