"""Ingest the runner's cucumber JSON report into a typed ``ParsedReport``.

The report is a list of features; each feature has ``elements`` (scenarios)
whose ``steps`` mix real Gherkin steps with ``Before``/``After`` hooks.
Hooks are split out, every step keeps its original position as ``order``,
and cucumber's single ``error_message`` field is split into a message and a
stack trace.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from appraise.core.errors import ReportParseError
from appraise.models.report import StepKeyword, StepStatus

logger = logging.getLogger(__name__)

_HOOK_KEYWORDS = {"Before", "After"}

_STATUS_MAP: dict[str, StepStatus] = {
    "PASSED": StepStatus.PASSED,
    "FAILED": StepStatus.FAILED,
    "SKIPPED": StepStatus.SKIPPED,
    "PENDING": StepStatus.PENDING,
    "UNDEFINED": StepStatus.UNDEFINED,
}

_KEYWORD_MAP: dict[str, StepKeyword] = {
    "GIVEN": StepKeyword.GIVEN,
    "WHEN": StepKeyword.WHEN,
    "THEN": StepKeyword.THEN,
    "AND": StepKeyword.AND,
    "BUT": StepKeyword.BUT,
    "BEFORE": StepKeyword.BEFORE,
    "AFTER": StepKeyword.AFTER,
}

# Checked in order; the first match decides the split point.
_STACK_PATTERNS: list[tuple[re.Pattern[str], bool]] = [
    (re.compile(r"\n\s*at\s"), False),
    (re.compile(r"\n\s+at\s"), False),
    (re.compile(r"Error:\s*$", re.MULTILINE), True),  # split after the match
]
_FILE_PATH_RE = re.compile(r"[/\\][\w\-.]+:\d+")
_FRAME_LINE_RE = re.compile(r"^\s*at\s")
_LONG_ERROR_THRESHOLD = 200


def map_step_status(status: str | None) -> StepStatus:
    """Map a cucumber status string; unknown values become PENDING."""
    return _STATUS_MAP.get((status or "").strip().upper(), StepStatus.PENDING)


def map_step_keyword(keyword: str | None) -> StepKeyword:
    """Map a Gherkin keyword; unknown values become GIVEN."""
    return _KEYWORD_MAP.get((keyword or "").strip().upper(), StepKeyword.GIVEN)


def split_error_message(text: str | None) -> tuple[str | None, str | None]:
    """Split a combined error string into ``(message, trace)``.

    Precedence: a newline followed by ``at``, then a line ending in
    ``Error:``, then (for long text containing ``file:line`` tokens) the
    first line that looks like a frame.  When no split point is found the
    whole text is the message and the trace is None.
    """
    if not text:
        return None, None

    split_index = -1
    for pattern, split_after in _STACK_PATTERNS:
        match = pattern.search(text)
        if match:
            split_index = match.end() if split_after else match.start()
            break

    if split_index == -1 and len(text) > _LONG_ERROR_THRESHOLD and _FILE_PATH_RE.search(text):
        for line in text.split("\n"):
            if _FRAME_LINE_RE.search(line) or _FILE_PATH_RE.search(line):
                split_index = text.index(line)
                break

    if split_index > 0:
        message = text[:split_index].strip()
        trace = text[split_index:].strip()
        return message or None, trace or None

    return text.strip() or None, None


@dataclass(frozen=True)
class ParsedTag:
    name: str
    line: int | None = None


@dataclass(frozen=True)
class ParsedStep:
    """A Gherkin step of a scenario."""

    keyword: StepKeyword
    raw_keyword: str
    line: int | None
    name: str
    match_location: str | None
    status: StepStatus
    duration: int
    error_message: str | None
    error_trace: str | None
    hidden: bool
    order: int


@dataclass(frozen=True)
class ParsedHook:
    """A Before/After hook of a scenario."""

    keyword: StepKeyword
    status: StepStatus
    duration: int
    error_message: str | None
    error_trace: str | None
    hidden: bool
    order: int


@dataclass(frozen=True)
class ParsedScenario:
    name: str
    description: str
    line: int | None
    keyword: str
    type: str
    cucumber_id: str
    tags: tuple[ParsedTag, ...] = ()
    steps: tuple[ParsedStep, ...] = ()
    hooks: tuple[ParsedHook, ...] = ()

    @property
    def duration(self) -> int:
        """Sum of step and hook durations (runner units, nanoseconds)."""
        return sum(s.duration for s in self.steps) + sum(h.duration for h in self.hooks)

    @property
    def failed(self) -> bool:
        return any(s.status is StepStatus.FAILED for s in (*self.steps, *self.hooks))


@dataclass(frozen=True)
class ParsedFeature:
    name: str
    description: str
    uri: str
    line: int | None
    keyword: str
    tags: tuple[ParsedTag, ...] = ()
    scenarios: tuple[ParsedScenario, ...] = ()


@dataclass(frozen=True)
class ParsedReport:
    """Typed, immutable view of one run's report."""

    features: tuple[ParsedFeature, ...] = field(default_factory=tuple)

    @property
    def scenarios(self) -> list[ParsedScenario]:
        return [sc for feature in self.features for sc in feature.scenarios]

    def summary(self) -> dict[str, int]:
        scenarios = self.scenarios
        failed = sum(1 for sc in scenarios if sc.failed)
        return {
            "features": len(self.features),
            "scenarios": len(scenarios),
            "passed": len(scenarios) - failed,
            "failed": failed,
        }


class ReportIngestor:
    """Reads and converts cucumber JSON reports."""

    def parse(self, report_path: str | Path) -> ParsedReport:
        """Parse the report at ``report_path``.

        Raises ``ReportParseError`` when the file is missing, is not JSON, or
        does not have the cucumber report shape.  Unknown status and keyword
        values do not fail the parse.
        """
        path = str(report_path)
        try:
            content = Path(report_path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ReportParseError(path, f"cannot read file: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise ReportParseError(path, f"not valid UTF-8: {exc}") from exc

        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ReportParseError(path, f"invalid JSON: {exc}") from exc

        try:
            report = self.parse_data(data)
        except (AttributeError, TypeError, ValueError, KeyError) as exc:
            raise ReportParseError(path, f"unexpected report shape: {exc}") from exc

        logger.info("report: parsed %s (%s)", path, report.summary())
        return report

    def parse_data(self, data: Any) -> ParsedReport:
        if not isinstance(data, list):
            raise TypeError(f"expected a list of features, got {type(data).__name__}")
        return ParsedReport(features=tuple(self._parse_feature(f) for f in data))

    def _parse_feature(self, feature: Any) -> ParsedFeature:
        _require(feature, dict, "feature")
        return ParsedFeature(
            name=feature.get("name") or "",
            description=feature.get("description") or "",
            uri=feature.get("uri") or "",
            line=feature.get("line"),
            keyword=feature.get("keyword") or "",
            tags=_parse_tags(feature.get("tags")),
            scenarios=tuple(
                self._parse_scenario(el) for el in _require_list(feature.get("elements"), "elements")
            ),
        )

    def _parse_scenario(self, element: Any) -> ParsedScenario:
        _require(element, dict, "scenario")
        steps: list[ParsedStep] = []
        hooks: list[ParsedHook] = []

        for index, step in enumerate(_require_list(element.get("steps"), "steps")):
            _require(step, dict, "step")
            raw_keyword = step.get("keyword") or ""
            result = step.get("result") or {}
            _require(result, dict, "step result")
            status = map_step_status(result.get("status") or "pending")
            duration = int(result.get("duration") or 0)
            message, trace = split_error_message(result.get("error_message"))
            hidden = bool(step.get("hidden", False))

            if raw_keyword in _HOOK_KEYWORDS:
                hooks.append(
                    ParsedHook(
                        keyword=map_step_keyword(raw_keyword),
                        status=status,
                        duration=duration,
                        error_message=message,
                        error_trace=trace,
                        hidden=hidden,
                        order=index,
                    )
                )
            else:
                steps.append(
                    ParsedStep(
                        keyword=map_step_keyword(raw_keyword),
                        raw_keyword=raw_keyword.strip(),
                        line=step.get("line"),
                        name=step.get("name") or "",
                        match_location=_match_location(step.get("match")),
                        status=status,
                        duration=duration,
                        error_message=message,
                        error_trace=trace,
                        hidden=hidden,
                        order=index,
                    )
                )

        return ParsedScenario(
            name=element.get("name") or "",
            description=element.get("description") or "",
            line=element.get("line"),
            keyword=element.get("keyword") or "",
            type=element.get("type") or "",
            cucumber_id=element.get("id") or "",
            tags=_parse_tags(element.get("tags")),
            steps=tuple(steps),
            hooks=tuple(hooks),
        )


def _require(value: Any, kind: type, what: str) -> None:
    if not isinstance(value, kind):
        raise TypeError(f"{what} must be a {kind.__name__}, got {type(value).__name__}")


def _require_list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    _require(value, list, what)
    return value


def _parse_tags(tags: Any) -> tuple[ParsedTag, ...]:
    return tuple(
        ParsedTag(name=t.get("name") or "", line=t.get("line"))
        for t in _require_list(tags, "tags")
        if isinstance(t, dict)
    )


def parse_cucumber_report(report_path: str | Path) -> ParsedReport:
    """Module-level shortcut for ``ReportIngestor().parse``."""
    return ReportIngestor().parse(report_path)


def _match_location(match: Any) -> str | None:
    if match is None:
        return None
    _require(match, dict, "step match")
    return match.get("location")
