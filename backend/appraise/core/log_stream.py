"""Server-Sent Events bridge between a test-run process and one HTTP viewer.

Each connection walks the same state machine:

1. validate the persisted run status (missing or finished runs end here);
2. wait, bounded, for the run's process to be registered;
3. attach: replay the captured transcript, then
4. forward live events until the process exits or the client goes away.

A connection never touches the process itself, so a failing or
disconnecting viewer cannot affect the run or other viewers.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from appraise.core.errors import (
    RegistrationTimeout,
    RunAlreadyFinished,
    RunNotFound,
    SpawnFailure,
)
from appraise.core.process import (
    EventType,
    ProcessEventBus,
    ProcessKey,
    ProcessPurpose,
    ProcessRegistry,
    SpawnedProcess,
    Subscription,
)
from appraise.models.test_run import TestRunStatus

logger = logging.getLogger(__name__)

StatusLookup = Callable[[str], Awaitable[TestRunStatus | None]]

SSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_FINISHED = (TestRunStatus.COMPLETED, TestRunStatus.CANCELLED)
_UNSET: Any = object()


def sse_event(event_type: str, data: dict[str, Any]) -> str:
    """Format data as a Server-Sent Event."""
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


def _log_event(stream: str, message: str) -> str:
    return sse_event("log", {"type": stream, "message": message})


class LogStreamGateway:
    """Produces the SSE stream of a run's live output."""

    def __init__(
        self,
        registry: ProcessRegistry,
        events: ProcessEventBus,
        status_lookup: StatusLookup,
        *,
        registration_timeout: float = 10.0,
        poll_interval: float = 0.25,
        close_grace: float = 0.1,
    ) -> None:
        self._registry = registry
        self._events = events
        self._status_lookup = status_lookup
        self.registration_timeout = registration_timeout
        self.poll_interval = poll_interval
        self.close_grace = close_grace

    @staticmethod
    def check_status(run_id: str, status: TestRunStatus | None) -> None:
        """Raise if a live stream makes no sense for a run in ``status``."""
        if status is None:
            raise RunNotFound(f"Test run {run_id} not found")
        if status in _FINISHED:
            raise RunAlreadyFinished(
                f"Test run {run_id} is {status.value}; its logs must be read from storage"
            )

    async def stream(
        self,
        run_id: str,
        status: TestRunStatus | None = _UNSET,
    ) -> AsyncIterator[str]:
        """Yield SSE frames for ``run_id``.

        ``status`` may be passed when the caller already looked it up.
        Every failure ends the stream with a single ``error`` event.
        """
        try:
            if status is _UNSET:
                status = await self._status_lookup(run_id)
            self.check_status(run_id, status)
        except (RunNotFound, RunAlreadyFinished) as exc:
            logger.info("gateway: rejected stream for run %s: %s", run_id, exc)
            yield sse_event("error", {"error": str(exc)})
            return

        # Subscribe before looking for the process so nothing emitted while
        # we wait is missed; duplicates are dropped by transcript position.
        subscription = self._events.subscribe(ProcessKey(run_id, ProcessPurpose.TEST_RUN))
        try:
            early_errors: list[str] = []
            try:
                process = await self._await_registration(run_id, subscription, early_errors)
            except (RegistrationTimeout, RunAlreadyFinished, RunNotFound, SpawnFailure) as exc:
                logger.info("gateway: run %s: %s", run_id, exc)
                yield sse_event("error", {"error": str(exc)})
                return

            yield sse_event(
                "connected",
                {"message": "Connected to log stream", "runId": run_id},
            )
            async for frame in self._attach(process, subscription, early_errors):
                yield frame
        finally:
            subscription.close()
            logger.debug("gateway: stream for run %s closed", run_id)

    async def _await_registration(
        self,
        run_id: str,
        subscription: Subscription,
        early_errors: list[str],
    ) -> SpawnedProcess:
        """Bounded wait for the run's registry entry.

        Waiting happens on the subscription inbox rather than a plain sleep,
        so a launcher ``error`` ends the wait at once and a disconnect
        (task cancellation) interrupts it immediately.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.registration_timeout
        exited_code: int | None = None
        exited = False
        while True:
            process = self._registry.get(run_id)
            if process is not None:
                return process
            if exited:
                raise RunAlreadyFinished(
                    f"Test run {run_id} process exited with code {exited_code} before the "
                    "log stream attached; its logs must be read from storage"
                )
            if early_errors:
                raise SpawnFailure(early_errors[-1])
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise RegistrationTimeout(
                    f"No running process found for test run {run_id} after "
                    f"{self.registration_timeout:g}s; it may still be starting, reconnect to retry"
                )
            try:
                event = await asyncio.wait_for(
                    subscription.get(), timeout=min(self.poll_interval, remaining)
                )
            except asyncio.TimeoutError:
                # The run may have been finished after its process left the
                # registry; no entry will ever appear then.
                self.check_status(run_id, await self._status_lookup(run_id))
                continue
            if event.type is EventType.ERROR:
                early_errors.append(event.error or "Process error")
            elif event.type is EventType.EXIT:
                exited, exited_code = True, event.code

    async def _attach(
        self,
        process: SpawnedProcess,
        subscription: Subscription,
        early_errors: list[str],
    ) -> AsyncIterator[str]:
        # Snapshot and the liveness check happen with no await in between,
        # so either the exit is already visible here or it is still to come
        # through the subscription.
        history = process.snapshot()
        already_exited = not process.is_running
        exit_code = process.exit_code

        for line in history:
            yield _log_event(line.stream, line.text)
        for message in early_errors:
            yield sse_event("error", {"error": message})

        if already_exited:
            yield sse_event("exit", {"code": exit_code})
            subscription.close()
            await asyncio.sleep(self.close_grace)
            return

        replayed = len(history)
        while True:
            event = await subscription.get()
            if event.type in (EventType.STDOUT, EventType.STDERR):
                if event.seq is not None and event.seq < replayed and process.options.capture_output:
                    continue
                yield _log_event(event.type.value, event.line or "")
            elif event.type is EventType.ERROR:
                yield sse_event("error", {"error": event.error or "Process error"})
            elif event.type is EventType.EXIT:
                yield sse_event("exit", {"code": event.code})
                subscription.close()
                await asyncio.sleep(self.close_grace)
                return
