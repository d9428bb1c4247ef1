"""Child process launching, event fan-out and the run registry."""

from appraise.core.process.launcher import (
    EventType,
    OutputLine,
    ProcessEvent,
    ProcessEventBus,
    ProcessKey,
    ProcessLauncher,
    ProcessPurpose,
    SpawnedProcess,
    SpawnOptions,
    Subscription,
)
from appraise.core.process.registry import ProcessRegistry

__all__ = [
    "EventType",
    "OutputLine",
    "ProcessEvent",
    "ProcessEventBus",
    "ProcessKey",
    "ProcessLauncher",
    "ProcessPurpose",
    "ProcessRegistry",
    "SpawnedProcess",
    "SpawnOptions",
    "Subscription",
]
