"""Test run executor.

Launches the cucumber runner for a test run, registers the child in the
process registry, and once it exits writes the log file, ingests the JSON
report and persists the final run status.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from appraise.config import Settings, get_settings
from appraise.core.errors import (
    ConcurrencyLimitReached,
    ReportParseError,
    SpawnFailure,
)
from appraise.core.log_formatter import LogEntry, format_logs_for_storage
from appraise.core.process import (
    ProcessKey,
    ProcessLauncher,
    ProcessPurpose,
    ProcessRegistry,
    SpawnedProcess,
    SpawnOptions,
)
from appraise.core.report_parser import ParsedReport, ReportIngestor
from appraise.core.store import RunStore, ScenarioOutcome
from appraise.models.test_run import BrowserEngine

logger = logging.getLogger(__name__)

_BROWSER_NAMES: dict[BrowserEngine, str] = {
    BrowserEngine.CHROMIUM: "chromium",
    BrowserEngine.FIREFOX: "firefox",
    BrowserEngine.WEBKIT: "webkit",
}

SCENARIO_END_EVENT = "scenario::end"


@dataclass
class TestRunExecutionConfig:
    """Parameters of one runner invocation."""

    __test__ = False

    run_id: str
    environment: str
    tags: list[str] = field(default_factory=list)
    workers: int = 1
    browser_engine: BrowserEngine | str | None = BrowserEngine.CHROMIUM
    headless: bool = True


def browser_name(engine: BrowserEngine | str | None) -> str:
    """Runner browser name for an engine; unknown or missing means chromium."""
    if engine is None:
        return "chromium"
    if isinstance(engine, BrowserEngine):
        return _BROWSER_NAMES[engine]
    try:
        return _BROWSER_NAMES[BrowserEngine(engine.upper())]
    except ValueError:
        return "chromium"


def combine_tags(tags: list[str] | None) -> str | None:
    """Join tag expressions with ``or``; each one is parenthesized when several."""
    cleaned = [t.strip() for t in tags or [] if t and t.strip()]
    if not cleaned:
        return None
    if len(cleaned) == 1:
        return cleaned[0]
    return " or ".join(f"({t})" for t in cleaned)


def parse_scenario_events(lines: list[str]) -> list[ScenarioOutcome]:
    """Collect the ``scenario::end`` announcements printed on stdout."""
    outcomes: list[ScenarioOutcome] = []
    for line in lines:
        text = line.strip()
        if not text.startswith("{"):
            continue
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            continue
        if not isinstance(payload, dict) or payload.get("event") != SCENARIO_END_EVENT:
            continue
        data = payload.get("data") or {}
        if not isinstance(data, dict) or not data.get("scenarioName"):
            continue
        outcomes.append(
            ScenarioOutcome(
                scenario_name=str(data["scenarioName"]),
                status=str(data.get("status") or "UNKNOWN").upper(),
                trace_path=data.get("tracePath") or None,
            )
        )
    return outcomes


class TestRunExecutor:
    """Starts, supervises and cancels runner processes."""

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        launcher: ProcessLauncher,
        registry: ProcessRegistry,
        store: RunStore,
        settings: Settings | None = None,
        ingestor: ReportIngestor | None = None,
    ) -> None:
        self.launcher = launcher
        self.registry = registry
        self.store = store
        self.settings = settings or get_settings()
        self.ingestor = ingestor or ReportIngestor()
        self._tasks: set[asyncio.Task[None]] = set()

    # ── Command building ──────────────────────────────────────────────────────

    def report_path_for(self, run_id: str) -> Path:
        reports_dir = Path(self.settings.reports_dir).resolve()
        return reports_dir / f"cucumber-{run_id}-{int(time.time() * 1000)}.json"

    def log_path_for(self, run_id: str) -> Path:
        return Path(self.settings.logs_dir).resolve() / f"test-run-{run_id}.log"

    def build_args(self, config: TestRunExecutionConfig) -> list[str]:
        args = list(self.settings.runner_args)
        tag_expression = combine_tags(config.tags)
        if tag_expression:
            args += ["-t", tag_expression]
        if config.workers and config.workers > 1:
            args += ["--parallel", str(config.workers)]
        return args

    def build_env(self, config: TestRunExecutionConfig, report_path: Path) -> dict[str, str]:
        return {
            "ENVIRONMENT": config.environment,
            "HEADLESS": "true" if config.headless else "false",
            "BROWSER": browser_name(config.browser_engine),
            "REPORT_PATH": str(report_path),
        }

    def ensure_capacity(self) -> None:
        """Raise ``ConcurrencyLimitReached`` when no run slot is free."""
        limit = self.settings.max_concurrent_runs
        if self.registry.size() >= limit:
            raise ConcurrencyLimitReached(f"Too many concurrent runs ({limit} max)")

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self, config: TestRunExecutionConfig) -> SpawnedProcess:
        """Spawn the runner for ``config.run_id`` and supervise it in the background.

        On ``SpawnFailure`` or ``ConcurrencyLimitReached`` the run is finished
        as failed and the exception is re-raised.
        """
        run_id = config.run_id
        try:
            self.ensure_capacity()
        except ConcurrencyLimitReached as exc:
            await self.store.finish_run(
                run_id, exit_code=None, log_path=None, passed=False, error_message=str(exc)
            )
            raise

        report_path = self.report_path_for(run_id)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        args = self.build_args(config)
        options = SpawnOptions(
            capture_output=True,
            echo=self.settings.echo_process_output,
            log_prefix=f"test-run-{run_id}",
            cwd=self.settings.runner_cwd,
            env=self.build_env(config, report_path),
        )

        try:
            process = await self.launcher.spawn(
                ProcessKey(run_id, ProcessPurpose.TEST_RUN),
                self.settings.runner_command,
                args,
                options,
            )
        except SpawnFailure as exc:
            await self.store.finish_run(
                run_id, exit_code=None, log_path=None, passed=False, error_message=str(exc)
            )
            raise

        self.registry.register(run_id, process)
        try:
            await self.store.mark_running(run_id, str(report_path))
        finally:
            # Only the supervisor unregisters the process and finishes the run.
            task = asyncio.create_task(
                self._supervise(run_id, process, report_path), name=f"test-run-{run_id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        logger.info(
            "executor: run %s started (env=%s browser=%s workers=%s)",
            run_id,
            config.environment,
            browser_name(config.browser_engine),
            config.workers,
        )
        return process

    async def cancel(self, run_id: str) -> bool:
        """Ask the run's process to stop. Does not wait for it to exit.

        Returns False when the run has no live process.
        """
        process = self.registry.get(run_id)
        if process is None or not process.is_running:
            return False
        await self.store.mark_cancelling(run_id)
        sent = process.terminate()
        logger.info("executor: cancel requested for run %s (signal sent=%s)", run_id, sent)
        return sent

    async def wait_idle(self) -> None:
        """Wait for every supervised run to be fully persisted."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _supervise(self, run_id: str, process: SpawnedProcess, report_path: Path) -> None:
        try:
            exit_code = await process.wait()
            # The registry must not outlive the process; viewers already attached
            # keep streaming from their own subscription.
            self.registry.unregister(run_id)
            await self._finish(run_id, process, exit_code, report_path)
        except Exception:
            logger.exception("executor: failed to finalize run %s", run_id)
        finally:
            self.registry.unregister(run_id)

    async def _finish(
        self,
        run_id: str,
        process: SpawnedProcess,
        exit_code: int | None,
        report_path: Path,
    ) -> None:
        log_path: Path | None = None
        error_message: str | None = None
        passed = False
        try:
            log_path = await self._write_log_file(run_id, process, exit_code)

            outcomes = parse_scenario_events(process.output.stdout)
            await self.store.record_test_cases(run_id, outcomes)

            parsed: ParsedReport | None = None
            try:
                parsed = await asyncio.to_thread(self.ingestor.parse, report_path)
            except ReportParseError as exc:
                logger.error("executor: %s", exc)
                error_message = str(exc)

            if parsed is not None:
                await self.store.save_report(run_id, str(report_path), parsed)

            any_failed = any(o.status == "FAILED" for o in outcomes) or (
                parsed is not None and parsed.summary()["failed"] > 0
            )
            passed = exit_code == 0 and not any_failed
        except Exception as exc:
            logger.exception("executor: could not ingest results of run %s", run_id)
            error_message = f"Failed to ingest test run results: {exc}"
            passed = False

        final_status = await self.store.finish_run(
            run_id,
            exit_code=exit_code,
            log_path=str(log_path) if log_path else None,
            passed=passed,
            error_message=error_message,
        )
        logger.info(
            "executor: run %s finished with exit code %s (status=%s, passed=%s)",
            run_id,
            exit_code,
            final_status.value if final_status else None,
            passed,
        )

    async def _write_log_file(
        self, run_id: str, process: SpawnedProcess, exit_code: int | None
    ) -> Path | None:
        entries = [LogEntry(line.stream, line.text, line.timestamp) for line in process.snapshot()]
        entries.insert(
            0,
            LogEntry(
                "status",
                f"Starting test run: {process.command} {' '.join(process.args)}",
                process.started_at or datetime.now(timezone.utc),
            ),
        )
        entries.append(
            LogEntry(
                "status",
                f"Process exited with code {exit_code}",
                process.finished_at or datetime.now(timezone.utc),
            )
        )
        log_path = self.log_path_for(run_id)
        try:
            await asyncio.to_thread(_write_text, log_path, format_logs_for_storage(entries))
        except OSError as exc:
            logger.error("executor: could not write log file for run %s: %s", run_id, exc)
            return None
        return log_path

    # ── Trace viewer ──────────────────────────────────────────────────────────

    def trace_viewer(self, test_case_id: str) -> SpawnedProcess | None:
        return self.launcher.get_process(ProcessKey(test_case_id, ProcessPurpose.TRACE_VIEWER))

    async def launch_trace_viewer(self, test_case_id: str, trace_path: str) -> SpawnedProcess:
        """Open the trace viewer for one test case; reuses a viewer already open."""
        existing = self.trace_viewer(test_case_id)
        if existing is not None and existing.is_running:
            return existing
        key = ProcessKey(test_case_id, ProcessPurpose.TRACE_VIEWER)
        args = [*self.settings.trace_viewer_args, str(Path(trace_path).resolve())]
        return await self.launcher.spawn(
            key,
            self.settings.runner_command,
            args,
            SpawnOptions(
                capture_output=False,
                echo=self.settings.echo_process_output,
                log_prefix=str(key),
                cwd=self.settings.runner_cwd,
            ),
        )


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")

