"""Persistence operations the orchestrator needs from the database."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from appraise.core.archive import RunArtifacts
from appraise.core.report_parser import ParsedReport
from appraise.models.report import Report, ReportFeature, ReportHook, ReportScenario, ReportStep
from appraise.models.test_run import TestRun, TestRunResult, TestRunStatus, TestRunTestCase

logger = logging.getLogger(__name__)

_ACTIVE = (TestRunStatus.QUEUED, TestRunStatus.RUNNING, TestRunStatus.CANCELLING)


@dataclass(frozen=True)
class ScenarioOutcome:
    """A ``scenario::end`` announcement from the runner."""

    scenario_name: str
    status: str
    trace_path: str | None = None


def is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except (ValueError, TypeError, AttributeError):
        return False
    return True


class RunStore:
    """Run/report persistence backed by async SQLAlchemy sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_run(self, run_id: str) -> TestRun | None:
        if not is_uuid(run_id):
            return None
        async with self._session_factory() as db:
            result = await db.execute(select(TestRun).where(TestRun.id == run_id))
            return result.scalar_one_or_none()

    async def get_status(self, run_id: str) -> TestRunStatus | None:
        if not is_uuid(run_id):
            return None
        async with self._session_factory() as db:
            result = await db.execute(select(TestRun.status).where(TestRun.id == run_id))
            status = result.scalar_one_or_none()
        return TestRunStatus(status) if status is not None else None

    async def mark_running(self, run_id: str, report_path: str) -> None:
        async with self._session_factory() as db:
            await db.execute(
                sa_update(TestRun)
                .where(TestRun.id == run_id)
                .values(
                    status=TestRunStatus.RUNNING,
                    report_path=report_path,
                    started_at=datetime.now(timezone.utc),
                )
            )
            await db.commit()

    async def mark_cancelling(self, run_id: str) -> bool:
        """Move an active run to CANCELLING. Returns False if it was not active."""
        async with self._session_factory() as db:
            result = await db.execute(
                sa_update(TestRun)
                .where(
                    TestRun.id == run_id,
                    TestRun.status.in_([TestRunStatus.QUEUED, TestRunStatus.RUNNING]),
                )
                .values(status=TestRunStatus.CANCELLING)
                .returning(TestRun.id)
            )
            changed = result.first() is not None
            await db.commit()
        return changed

    async def finish_run(
        self,
        run_id: str,
        *,
        exit_code: int | None,
        log_path: str | None,
        passed: bool,
        error_message: str | None = None,
    ) -> TestRunStatus | None:
        """Write the final status; a CANCELLING run ends as CANCELLED."""
        async with self._session_factory() as db:
            result = await db.execute(select(TestRun).where(TestRun.id == run_id))
            test_run = result.scalar_one_or_none()
            if test_run is None:
                logger.error("store: run %s vanished before completion", run_id)
                return None

            completed = datetime.now(timezone.utc)
            if test_run.status == TestRunStatus.CANCELLING:
                test_run.status = TestRunStatus.CANCELLED
                test_run.result = TestRunResult.CANCELLED
            else:
                test_run.status = TestRunStatus.COMPLETED
                test_run.result = TestRunResult.PASSED if passed else TestRunResult.FAILED
            test_run.exit_code = exit_code
            test_run.log_path = log_path
            test_run.completed_at = completed
            if error_message:
                test_run.error_message = error_message
            if test_run.started_at:
                test_run.duration_ms = int((completed - test_run.started_at).total_seconds() * 1000)
            final_status = TestRunStatus(test_run.status)
            await db.commit()
        return final_status

    async def record_test_cases(self, run_id: str, outcomes: list[ScenarioOutcome]) -> None:
        if not outcomes:
            return
        async with self._session_factory() as db:
            for outcome in outcomes:
                db.add(
                    TestRunTestCase(
                        test_run_id=run_id,
                        scenario_name=outcome.scenario_name,
                        status=outcome.status,
                        trace_path=outcome.trace_path,
                    )
                )
            await db.commit()

    async def save_report(self, run_id: str, report_path: str, parsed: ParsedReport) -> str:
        """Persist the parsed report tree and return the report id."""
        async with self._session_factory() as db:
            name_result = await db.execute(select(TestRun.name).where(TestRun.id == run_id))
            run_name = name_result.scalar_one_or_none() or run_id
            report = Report(
                test_run_id=run_id,
                name=f"Test Run Report - {run_name}",
                description=f"Report for test run: {run_name}",
                report_path=report_path,
            )
            for feature in parsed.features:
                report_feature = ReportFeature(
                    name=feature.name,
                    description=feature.description,
                    uri=feature.uri,
                    line=feature.line,
                    keyword=feature.keyword,
                    tags=[{"name": t.name, "line": t.line} for t in feature.tags],
                )
                for scenario in feature.scenarios:
                    report_scenario = ReportScenario(
                        name=scenario.name,
                        description=scenario.description,
                        line=scenario.line,
                        keyword=scenario.keyword,
                        type=scenario.type,
                        cucumber_id=scenario.cucumber_id,
                        tags=[{"name": t.name, "line": t.line} for t in scenario.tags],
                    )
                    report_scenario.steps = [
                        ReportStep(
                            keyword=step.keyword,
                            line=step.line,
                            name=step.name,
                            match_location=step.match_location,
                            status=step.status,
                            duration=step.duration,
                            error_message=step.error_message,
                            error_trace=step.error_trace,
                            hidden=step.hidden,
                            order=step.order,
                        )
                        for step in scenario.steps
                    ]
                    report_scenario.hooks = [
                        ReportHook(
                            keyword=hook.keyword,
                            status=hook.status,
                            duration=hook.duration,
                            error_message=hook.error_message,
                            error_trace=hook.error_trace,
                            hidden=hook.hidden,
                            order=hook.order,
                        )
                        for hook in scenario.hooks
                    ]
                    report_feature.scenarios.append(report_scenario)
                report.features.append(report_feature)

            db.add(report)
            await db.commit()
            await db.refresh(report)
            return str(report.id)

    async def get_artifacts(self, run_id: str) -> RunArtifacts | None:
        if not is_uuid(run_id):
            return None
        async with self._session_factory() as db:
            result = await db.execute(select(TestRun.log_path).where(TestRun.id == run_id))
            row = result.first()
            if row is None:
                return None
            traces = await db.execute(
                select(TestRunTestCase.trace_path).where(
                    TestRunTestCase.test_run_id == run_id,
                    TestRunTestCase.trace_path.is_not(None),
                )
            )
            return RunArtifacts(log_path=row[0], trace_paths=list(traces.scalars().all()))

    async def get_test_case(self, run_id: str, test_case_id: str) -> TestRunTestCase | None:
        if not (is_uuid(run_id) and is_uuid(test_case_id)):
            return None
        async with self._session_factory() as db:
            result = await db.execute(
                select(TestRunTestCase).where(
                    TestRunTestCase.id == test_case_id,
                    TestRunTestCase.test_run_id == run_id,
                )
            )
            return result.scalar_one_or_none()

    async def recover_orphaned_runs(self) -> list[str]:
        """Mark runs left active by a previous server process as CANCELLED."""
        async with self._session_factory() as db:
            result = await db.execute(
                sa_update(TestRun)
                .where(TestRun.status.in_(_ACTIVE))
                .values(
                    status=TestRunStatus.CANCELLED,
                    result=TestRunResult.CANCELLED,
                    error_message="Server restarted during run",
                    completed_at=datetime.now(timezone.utc),
                )
                .returning(TestRun.id)
            )
            run_ids = [str(r[0]) for r in result.all()]
            await db.commit()
        if run_ids:
            logger.warning("store: recovered %d orphaned test run(s): %s", len(run_ids), run_ids)
        return run_ids
