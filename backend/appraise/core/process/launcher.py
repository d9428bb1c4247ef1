"""Child process launcher with line-by-line output capture and event fan-out.

Every spawned process is identified by a typed ``ProcessKey`` (owner id +
purpose).  Its stdout and stderr are read by two independent tasks; each line
is appended to the in-memory transcript and then published on the shared
``ProcessEventBus`` in the same synchronous step, so a reader that takes a
transcript snapshot never sees a line that was not (or will not be) published.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from appraise.core.errors import SpawnFailure

logger = logging.getLogger(__name__)
output_logger = logging.getLogger("appraise.process.output")

StreamName = Literal["stdout", "stderr"]

# asyncio's default 64 KiB line limit is too small for minified stack traces
_READ_LIMIT = 1024 * 1024


class ProcessPurpose(str, Enum):
    """What a spawned process is for; part of its identity."""

    TEST_RUN = "test-run"
    TRACE_VIEWER = "trace-viewer"


@dataclass(frozen=True)
class ProcessKey:
    """Identity of a spawned process used to route its events."""

    owner_id: str
    purpose: ProcessPurpose = ProcessPurpose.TEST_RUN

    def __str__(self) -> str:
        return f"{self.purpose.value}-{self.owner_id}"


class EventType(str, Enum):
    """Lifecycle events published by the launcher."""

    STARTED = "started"
    STDOUT = "stdout"
    STDERR = "stderr"
    EXIT = "exit"
    ERROR = "error"


@dataclass(frozen=True)
class ProcessEvent:
    """One lifecycle event of one process.

    ``seq`` is the line's position in the combined transcript and is only set
    for stdout/stderr events.
    """

    type: EventType
    key: ProcessKey
    line: str | None = None
    seq: int | None = None
    code: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class OutputLine:
    """A captured line of child output."""

    stream: StreamName
    text: str
    seq: int
    timestamp: datetime


@dataclass
class ProcessOutput:
    """Append-only transcript of a process's output."""

    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    lines: list[OutputLine] = field(default_factory=list)


@dataclass
class SpawnOptions:
    """How a child process is started and how its output is handled."""

    capture_output: bool = True
    echo: bool = False
    log_prefix: str | None = None
    cwd: str | None = None
    env: dict[str, str] | None = None


class Subscription:
    """A listener's private inbox of events for one process key."""

    def __init__(self, bus: ProcessEventBus, key: ProcessKey) -> None:
        self.key = key
        self._bus = bus
        self._queue: asyncio.Queue[ProcessEvent] = asyncio.Queue()
        self.closed = False

    def deliver(self, event: ProcessEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    async def get(self) -> ProcessEvent:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus.unsubscribe(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ProcessEventBus:
    """Publish/subscribe fan-out shared by every spawned process.

    Subscribers are indexed by ``ProcessKey`` when they subscribe, so
    publishing only touches the listeners of the emitting process.  Delivery
    goes to a copy of the subscriber list, so subscribing or unsubscribing
    while an event is being delivered is safe.  Queues are unbounded: the
    writer never waits for a slow reader.
    """

    def __init__(self) -> None:
        self._subscribers: dict[ProcessKey, list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, key: ProcessKey) -> Subscription:
        sub = Subscription(self, key)
        with self._lock:
            self._subscribers.setdefault(key, []).append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.key)
            if not subs:
                return
            try:
                subs.remove(sub)
            except ValueError:
                pass
            if not subs:
                del self._subscribers[sub.key]

    def publish(self, event: ProcessEvent) -> None:
        with self._lock:
            targets = list(self._subscribers.get(event.key, ()))
        for sub in targets:
            sub.deliver(event)

    def subscriber_count(self, key: ProcessKey) -> int:
        with self._lock:
            return len(self._subscribers.get(key, ()))


class SpawnedProcess:
    """A live or recently exited child process.

    Only the launcher mutates it; once ``is_running`` is False it no longer
    changes.
    """

    def __init__(
        self,
        key: ProcessKey,
        command: str,
        args: list[str],
        options: SpawnOptions,
    ) -> None:
        self.key = key
        self.command = command
        self.args = list(args)
        self.options = options
        self.output = ProcessOutput()
        self.is_running = False
        self.exit_code: int | None = None
        self.pid: int | None = None
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None
        self._proc: asyncio.subprocess.Process | None = None
        self._done = asyncio.Event()

    @property
    def name(self) -> str:
        return str(self.key)

    @property
    def has_exited(self) -> bool:
        return self._done.is_set()

    def snapshot(self) -> list[OutputLine]:
        """Copy of every captured line so far, in emission order."""
        return list(self.output.lines)

    async def wait(self) -> int | None:
        """Wait until the exit event has been published; return the exit code."""
        await self._done.wait()
        return self.exit_code

    def terminate(self) -> bool:
        """Send SIGTERM. Returns False if the process is not running."""
        if self._proc is None or not self.is_running or self._proc.returncode is not None:
            return False
        try:
            self._proc.terminate()
        except ProcessLookupError:
            return False
        return True

    def kill(self) -> bool:
        if self._proc is None or not self.is_running or self._proc.returncode is not None:
            return False
        try:
            self._proc.kill()
        except ProcessLookupError:
            return False
        return True

    def __repr__(self) -> str:
        return f"<SpawnedProcess(name={self.name}, pid={self.pid}, running={self.is_running})>"


class ProcessLauncher:
    """Spawns child processes and publishes their lifecycle on ``events``."""

    def __init__(self, events: ProcessEventBus | None = None) -> None:
        self.events = events or ProcessEventBus()
        self._live: dict[ProcessKey, SpawnedProcess] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def get_process(self, key: ProcessKey) -> SpawnedProcess | None:
        """Return the live process for ``key``, if any."""
        return self._live.get(key)

    def live_processes(self) -> list[SpawnedProcess]:
        return list(self._live.values())

    async def spawn(
        self,
        key: ProcessKey,
        command: str,
        args: list[str],
        options: SpawnOptions | None = None,
    ) -> SpawnedProcess:
        """Start ``command args`` and begin streaming its output.

        Raises ``SpawnFailure`` (after publishing an ``error`` event for
        ``key``) when the OS cannot start the process; no ``exit`` event is
        published in that case.
        """
        options = options or SpawnOptions()
        spawned = SpawnedProcess(key, command, args, options)
        piped = options.capture_output or options.echo
        stream_target = asyncio.subprocess.PIPE if piped else asyncio.subprocess.DEVNULL
        env = {**os.environ, **options.env} if options.env else None

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=options.cwd,
                env=env,
                stdout=stream_target,
                stderr=stream_target,
                limit=_READ_LIMIT,
            )
        except (OSError, ValueError) as exc:
            message = f"Failed to start {command!r}: {exc}"
            logger.error("launcher: %s (%s)", message, key)
            self.events.publish(ProcessEvent(EventType.ERROR, key, error=message))
            raise SpawnFailure(message) from exc

        spawned._proc = proc
        spawned.pid = proc.pid
        spawned.is_running = True
        spawned.started_at = datetime.now(timezone.utc)
        self._live[key] = spawned
        logger.info("launcher: started %s pid=%s: %s %s", key, proc.pid, command, " ".join(args))
        self.events.publish(ProcessEvent(EventType.STARTED, key))

        task = asyncio.create_task(self._supervise(spawned, proc), name=f"supervise-{key}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return spawned

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Terminate every live child and wait for their exit events."""
        live = self.live_processes()
        for spawned in live:
            spawned.terminate()
        if not live:
            return
        try:
            await asyncio.wait_for(
                asyncio.gather(*(p.wait() for p in live)), timeout=timeout
            )
        except asyncio.TimeoutError:
            for spawned in live:
                spawned.kill()
            logger.warning("launcher: %d process(es) killed after shutdown timeout", len(live))

    def _record_line(self, spawned: SpawnedProcess, stream: StreamName, text: str) -> None:
        """Append to the transcript and publish in one step (no await in between)."""
        opts = spawned.options
        seq = len(spawned.output.lines)
        if opts.capture_output:
            spawned.output.lines.append(
                OutputLine(stream=stream, text=text, seq=seq, timestamp=datetime.now(timezone.utc))
            )
            getattr(spawned.output, stream).append(text)
        if opts.echo:
            prefix = f"[{opts.log_prefix}] " if opts.log_prefix else ""
            if stream == "stderr":
                output_logger.warning("%s%s", prefix, text)
            else:
                output_logger.info("%s%s", prefix, text)
        event_type = EventType.STDOUT if stream == "stdout" else EventType.STDERR
        self.events.publish(ProcessEvent(event_type, spawned.key, line=text, seq=seq))

    async def _read_stream(
        self,
        spawned: SpawnedProcess,
        stream: asyncio.StreamReader | None,
        name: StreamName,
    ) -> None:
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError as exc:
                # Line exceeded the read limit; report it and keep draining
                self.events.publish(
                    ProcessEvent(EventType.ERROR, spawned.key, error=f"{name} read error: {exc}")
                )
                logger.warning("launcher: %s %s read error: %s", spawned.key, name, exc)
                continue
            if not raw:
                break
            self._record_line(spawned, name, raw.decode("utf-8", errors="replace").rstrip("\r\n"))

    async def _supervise(self, spawned: SpawnedProcess, proc: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.gather(
                self._read_stream(spawned, proc.stdout, "stdout"),
                self._read_stream(spawned, proc.stderr, "stderr"),
            )
            code = await proc.wait()
        except Exception as exc:
            logger.exception("launcher: error while reading %s", spawned.key)
            self.events.publish(ProcessEvent(EventType.ERROR, spawned.key, error=str(exc)))
            code = await proc.wait()

        spawned.exit_code = code
        spawned.is_running = False
        spawned.finished_at = datetime.now(timezone.utc)
        self._live.pop(spawned.key, None)
        logger.info("launcher: %s exited with code %s", spawned.key, code)
        self.events.publish(ProcessEvent(EventType.EXIT, spawned.key, code=code))
        spawned._done.set()
