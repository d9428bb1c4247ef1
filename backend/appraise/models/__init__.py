"""Database models."""

from appraise.models.report import (
    Report,
    ReportFeature,
    ReportHook,
    ReportScenario,
    ReportStep,
    StepKeyword,
    StepStatus,
)
from appraise.models.test_run import (
    BrowserEngine,
    TestRun,
    TestRunResult,
    TestRunStatus,
    TestRunTestCase,
)

__all__ = [
    "BrowserEngine",
    "Report",
    "ReportFeature",
    "ReportHook",
    "ReportScenario",
    "ReportStep",
    "StepKeyword",
    "StepStatus",
    "TestRun",
    "TestRunResult",
    "TestRunStatus",
    "TestRunTestCase",
]
