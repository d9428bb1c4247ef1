"""Serialize captured run output to and from the stored log file format.

One entry per line: ``[ISO timestamp] [TYPE] message`` with newlines inside
the message escaped as ``\\n``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

logger = logging.getLogger(__name__)

LogType = Literal["stdout", "stderr", "status"]

_LINE_RE = re.compile(r"^\[([^\]]+)\] \[([^\]]+)\] ?(.*)$")
_VALID_TYPES = ("stdout", "stderr", "status")


@dataclass(frozen=True)
class LogEntry:
    type: LogType
    message: str
    timestamp: datetime


def format_logs_for_storage(entries: list[LogEntry]) -> str:
    lines = []
    for entry in entries:
        message = entry.message.replace("\n", "\\n")
        lines.append(f"[{entry.timestamp.isoformat()}] [{entry.type.upper()}] {message}")
    return "\n".join(lines)


def parse_logs_from_storage(text: str | None) -> list[LogEntry]:
    """Parse stored log text back into entries.

    Blank lines are skipped; lines not in the stored format are kept as
    stdout.
    """
    if not text or not text.strip():
        return []

    entries: list[LogEntry] = []
    for line in text.split("\n"):
        if not line.strip():
            continue
        match = _LINE_RE.match(line)
        if not match:
            entries.append(LogEntry("stdout", line, datetime.now(timezone.utc)))
            continue

        timestamp_str, type_str, message = match.groups()
        log_type = type_str.lower()
        if log_type not in _VALID_TYPES:
            logger.debug("log_formatter: skipping line with unknown type %r", type_str)
            continue
        try:
            timestamp = datetime.fromisoformat(timestamp_str)
        except ValueError:
            timestamp = datetime.now(timezone.utc)
        entries.append(LogEntry(log_type, message.replace("\\n", "\n"), timestamp))  # type: ignore[arg-type]
    return entries
