"""Exceptions raised by the run orchestrator."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for orchestrator failures."""


class SpawnFailure(OrchestratorError):
    """The OS refused to start the child process (missing executable, bad cwd...)."""


class DuplicateRegistration(OrchestratorError):
    """A second live process was registered for a run id that already has one."""


class ConcurrencyLimitReached(OrchestratorError):
    """Too many test runs are already executing on this host."""


class RunNotFound(OrchestratorError):
    """The requested run does not exist in persistence."""


class RunAlreadyFinished(OrchestratorError):
    """The run is completed or cancelled; it has no live process."""


class RegistrationTimeout(OrchestratorError):
    """No process was registered for the run within the wait bound."""


class ReportParseError(OrchestratorError):
    """The runner's JSON report is missing, malformed or has an unexpected shape."""

    def __init__(self, path: str, cause: str) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to parse cucumber report at {path}: {cause}")


class ArchiveNoFiles(OrchestratorError):
    """Neither a log file nor any trace file exists for the run."""
