"""Registry of the live process of each test run."""

from __future__ import annotations

import logging
from threading import Lock

from appraise.core.errors import DuplicateRegistration
from appraise.core.process.launcher import SpawnedProcess

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """Thread-safe ``run_id -> SpawnedProcess`` lookup table.

    Holds at most one entry per run id.  It performs no I/O and owns no
    timers; waiting for an entry to appear is the caller's business.
    """

    def __init__(self) -> None:
        self._processes: dict[str, SpawnedProcess] = {}
        self._lock = Lock()

    def register(self, run_id: str, process: SpawnedProcess) -> None:
        """Register ``process`` for ``run_id``.

        Replacing an entry whose process has already exited is allowed;
        replacing a live one raises ``DuplicateRegistration``.
        """
        with self._lock:
            existing = self._processes.get(run_id)
            if existing is not None and existing is not process and existing.is_running:
                raise DuplicateRegistration(
                    f"Run {run_id} already has a live process ({existing.name})"
                )
            self._processes[run_id] = process
            total = len(self._processes)
        logger.info("registry: registered %s for run %s (%d active)", process.name, run_id, total)

    def get(self, run_id: str) -> SpawnedProcess | None:
        with self._lock:
            return self._processes.get(run_id)

    def unregister(self, run_id: str) -> bool:
        """Remove the entry for ``run_id``. Missing ids are a no-op."""
        with self._lock:
            removed = self._processes.pop(run_id, None)
            total = len(self._processes)
        if removed is not None:
            logger.info("registry: unregistered run %s (%d active)", run_id, total)
        return removed is not None

    def has(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._processes

    def run_ids(self) -> list[str]:
        with self._lock:
            return list(self._processes)

    def size(self) -> int:
        with self._lock:
            return len(self._processes)

    def clear(self) -> None:
        with self._lock:
            self._processes.clear()
