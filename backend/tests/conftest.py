"""Shared pytest fixtures for the run orchestrator tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from appraise.api.deps import get_orchestrator
from appraise.config import Settings
from appraise.core.orchestrator import RunOrchestrator
from appraise.db.session import get_db
from appraise.main import app
from appraise.models.test_run import BrowserEngine, TestRunResult, TestRunStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Model factories ───────────────────────────────────────────────────────────

def make_test_run(
    *,
    status: TestRunStatus = TestRunStatus.RUNNING,
    result: TestRunResult = TestRunResult.PENDING,
    environment: str = "staging",
    log_path: str | None = None,
) -> MagicMock:
    """Create a mock TestRun ORM object with all response fields."""
    r = MagicMock()
    r.id = str(uuid4())
    r.name = "Nightly"
    r.status = status
    r.result = result
    r.environment = environment
    r.browser_engine = BrowserEngine.CHROMIUM
    r.headless = True
    r.workers = 1
    r.tags = ["@smoke"]
    r.report_path = None
    r.log_path = log_path
    r.started_at = _now()
    r.completed_at = None
    r.duration_ms = None
    r.exit_code = None
    r.error_message = None
    r.created_at = _now()
    r.updated_at = _now()
    return r


def make_test_case(*, run_id: str | None = None, trace_path: str | None = None) -> MagicMock:
    """Create a mock TestRunTestCase ORM object."""
    c = MagicMock()
    c.id = str(uuid4())
    c.test_run_id = run_id or str(uuid4())
    c.scenario_name = "Login works"
    c.status = "FAILED"
    c.trace_path = trace_path
    c.created_at = _now()
    return c


# ── Store / orchestrator fixtures ─────────────────────────────────────────────

@pytest.fixture
def mock_store() -> MagicMock:
    """A RunStore double whose coroutine methods are AsyncMocks."""
    store = MagicMock()
    store.get_run = AsyncMock(return_value=None)
    store.get_status = AsyncMock(return_value=None)
    store.mark_running = AsyncMock()
    store.mark_cancelling = AsyncMock(return_value=True)
    store.finish_run = AsyncMock(return_value=TestRunStatus.COMPLETED)
    store.record_test_cases = AsyncMock()
    store.save_report = AsyncMock(return_value=str(uuid4()))
    store.get_artifacts = AsyncMock(return_value=None)
    store.get_test_case = AsyncMock(return_value=None)
    store.recover_orphaned_runs = AsyncMock(return_value=[])
    return store


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing report and log output at a temporary directory."""
    return Settings(
        reports_dir=str(tmp_path / "reports"),
        logs_dir=str(tmp_path / "logs"),
        echo_process_output=False,
        registration_timeout_seconds=0.5,
        registration_poll_interval_seconds=0.05,
        stream_close_grace_seconds=0.0,
    )


@pytest.fixture
def orchestrator(mock_store: MagicMock, test_settings: Settings) -> RunOrchestrator:
    return RunOrchestrator(mock_store, test_settings)


# ── Database mock helpers ─────────────────────────────────────────────────────

@pytest.fixture
def mock_db() -> MagicMock:
    """Return a mock async SQLAlchemy session."""
    session = MagicMock()
    session.execute = AsyncMock()
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.delete = AsyncMock()

    # refresh sets id and timestamps on the object (mimics DB roundtrip)
    async def _refresh(obj: object) -> None:
        if getattr(obj, "id", None) is None:
            obj.id = str(uuid4())  # type: ignore[attr-defined]
        if getattr(obj, "created_at", None) is None:
            obj.created_at = _now()  # type: ignore[attr-defined]
        if getattr(obj, "updated_at", None) is None:
            obj.updated_at = _now()  # type: ignore[attr-defined]

    session.refresh = AsyncMock(side_effect=_refresh)
    return session


def scalar_one_or_none(item) -> MagicMock:
    """Create a mock execute result whose .scalar_one_or_none() returns `item`."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = item
    return result


@pytest.fixture
async def client(
    mock_db: MagicMock, orchestrator: RunOrchestrator
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with mocked database and orchestrator dependencies."""

    async def override_get_db() -> AsyncGenerator:
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
    await orchestrator.shutdown(timeout=2.0)
