"""Pydantic schemas for API validation."""

from appraise.schemas.test_run import (
    CancelResponse,
    ProcessStatusResponse,
    StoredLogEntry,
    TestRunCreate,
    TestRunResponse,
    TestRunTestCaseResponse,
    TraceViewerStatus,
)

__all__ = [
    "CancelResponse",
    "ProcessStatusResponse",
    "StoredLogEntry",
    "TestRunCreate",
    "TestRunResponse",
    "TestRunTestCaseResponse",
    "TraceViewerStatus",
]
