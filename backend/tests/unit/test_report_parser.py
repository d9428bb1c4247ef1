"""Unit tests for the cucumber report ingestor.

Total: 21 tests
"""

from __future__ import annotations

import json

import pytest

from appraise.core.errors import ReportParseError
from appraise.core.report_parser import (
    ReportIngestor,
    map_step_keyword,
    map_step_status,
    parse_cucumber_report,
    split_error_message,
)
from appraise.models.report import StepKeyword, StepStatus


# ── Shared test data ──────────────────────────────────────────────────────────

COMBINED_ERROR = (
    "AssertionError: expected 'Dashboard' to equal 'Login'\n"
    "    at World.<anonymous> (/app/src/steps/login.steps.ts:42:11)\n"
    "    at processTicksAndRejections (node:internal/process/task_queues:95:5)"
)


def _report(failing_error: str = COMBINED_ERROR) -> list[dict]:
    return [
        {
            "name": "Login",
            "description": "  Users sign in",
            "uri": "features/login.feature",
            "line": 1,
            "keyword": "Feature",
            "tags": [{"name": "@auth", "line": 1}],
            "elements": [
                {
                    "id": "login;valid-credentials",
                    "name": "Valid credentials",
                    "line": 4,
                    "keyword": "Scenario",
                    "type": "scenario",
                    "tags": [{"name": "@smoke", "line": 3}],
                    "steps": [
                        {"keyword": "Before", "hidden": True, "result": {"status": "passed", "duration": 1000}},
                        {
                            "keyword": "Given ",
                            "name": "I am on the login page",
                            "line": 5,
                            "match": {"location": "src/steps/login.steps.ts:10"},
                            "result": {"status": "passed", "duration": 2000},
                        },
                        {"keyword": "After", "hidden": True, "result": {"status": "passed", "duration": 500}},
                    ],
                },
                {
                    "id": "login;wrong-password",
                    "name": "Wrong password",
                    "line": 8,
                    "keyword": "Scenario",
                    "type": "scenario",
                    "steps": [
                        {
                            "keyword": "When ",
                            "name": "I submit a wrong password",
                            "line": 9,
                            "result": {"status": "passed", "duration": 3000},
                        },
                        {
                            "keyword": "Then ",
                            "name": "I see the dashboard",
                            "line": 10,
                            "result": {
                                "status": "failed",
                                "duration": 4000,
                                "error_message": failing_error,
                            },
                        },
                    ],
                },
            ],
        }
    ]


def _write(tmp_path, data) -> str:
    path = tmp_path / "cucumber.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


# ── Parsing ───────────────────────────────────────────────────────────────────

def test_parse_splits_failing_step_error_and_leaves_passing_step_clean(tmp_path):
    report = ReportIngestor().parse(_write(tmp_path, _report()))

    passing, failing = report.features[0].scenarios
    given = passing.steps[0]
    then = failing.steps[1]

    assert given.status is StepStatus.PASSED
    assert given.error_message is None
    assert given.error_trace is None

    assert then.status is StepStatus.FAILED
    assert then.error_message == "AssertionError: expected 'Dashboard' to equal 'Login'"
    assert then.error_trace.startswith("at World.<anonymous>")


def test_short_error_is_message_only(tmp_path):
    report = ReportIngestor().parse(_write(tmp_path, _report("Timed out waiting for selector")))

    failing_step = report.features[0].scenarios[1].steps[1]
    assert failing_step.error_message == "Timed out waiting for selector"
    assert failing_step.error_trace is None


def test_hooks_are_split_from_steps_and_keep_original_order(tmp_path):
    report = ReportIngestor().parse(_write(tmp_path, _report()))
    scenario = report.features[0].scenarios[0]

    assert [s.name for s in scenario.steps] == ["I am on the login page"]
    assert [h.keyword for h in scenario.hooks] == [StepKeyword.BEFORE, StepKeyword.AFTER]
    assert [h.order for h in scenario.hooks] == [0, 2]
    assert scenario.steps[0].order == 1
    assert scenario.steps[0].raw_keyword == "Given"
    assert scenario.steps[0].match_location == "src/steps/login.steps.ts:10"


def test_feature_and_scenario_metadata(tmp_path):
    report = ReportIngestor().parse(_write(tmp_path, _report()))
    feature = report.features[0]
    scenario = feature.scenarios[0]

    assert feature.uri == "features/login.feature"
    assert feature.tags[0].name == "@auth"
    assert scenario.cucumber_id == "login;valid-credentials"
    assert scenario.tags[0].name == "@smoke"
    assert scenario.duration == 3500


def test_summary_counts_failed_scenarios(tmp_path):
    report = ReportIngestor().parse(_write(tmp_path, _report()))

    assert report.summary() == {"features": 1, "scenarios": 2, "passed": 1, "failed": 1}


def test_missing_result_means_pending_with_zero_duration():
    data = [{"name": "F", "elements": [{"name": "S", "steps": [{"keyword": "And ", "name": "x"}]}]}]

    step = ReportIngestor().parse_data(data).features[0].scenarios[0].steps[0]

    assert step.status is StepStatus.PENDING
    assert step.duration == 0
    assert step.keyword is StepKeyword.AND


def test_unknown_status_and_keyword_degrade_to_defaults():
    data = [
        {
            "name": "F",
            "elements": [
                {"name": "S", "steps": [{"keyword": "* ", "result": {"status": "ambiguous"}}]}
            ],
        }
    ]

    step = ReportIngestor().parse_data(data).features[0].scenarios[0].steps[0]

    assert step.status is StepStatus.PENDING
    assert step.keyword is StepKeyword.GIVEN


def test_parse_cucumber_report_shortcut(tmp_path):
    report = parse_cucumber_report(_write(tmp_path, []))
    assert report.features == ()


# ── Failures ──────────────────────────────────────────────────────────────────

def test_missing_file_raises_report_parse_error(tmp_path):
    missing = tmp_path / "nope.json"

    with pytest.raises(ReportParseError) as exc_info:
        ReportIngestor().parse(missing)

    assert exc_info.value.path == str(missing)
    assert "cannot read file" in exc_info.value.cause


def test_invalid_json_raises_report_parse_error(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ReportParseError, match="invalid JSON"):
        ReportIngestor().parse(path)


def test_wrong_shape_raises_report_parse_error(tmp_path):
    with pytest.raises(ReportParseError, match="unexpected report shape"):
        ReportIngestor().parse(_write(tmp_path, {"features": []}))


def test_undecodable_bytes_raise_report_parse_error(tmp_path):
    path = tmp_path / "binary.json"
    path.write_bytes(b'[{"name": "\xff\xfe"}]')

    with pytest.raises(ReportParseError, match="not valid UTF-8"):
        ReportIngestor().parse(path)


@pytest.mark.parametrize(
    "step",
    [
        {"keyword": "Given ", "result": "passed"},
        {"keyword": "Given ", "match": "src/steps/login.steps.ts:10"},
        {"keyword": "Before", "result": ["passed"]},
    ],
)
def test_wrong_typed_step_fields_raise_report_parse_error(tmp_path, step):
    data = [{"name": "F", "elements": [{"name": "S", "steps": [step]}]}]

    with pytest.raises(ReportParseError, match="unexpected report shape"):
        ReportIngestor().parse(_write(tmp_path, data))


# ── Lookups and error splitting ───────────────────────────────────────────────

def test_status_and_keyword_lookup_is_case_insensitive():
    assert map_step_status("Failed") is StepStatus.FAILED
    assert map_step_status(None) is StepStatus.PENDING
    assert map_step_keyword(" then ") is StepKeyword.THEN
    assert map_step_keyword("Dado") is StepKeyword.GIVEN


def test_split_on_newline_at():
    message, trace = split_error_message("Boom\n  at foo (a.js:1:1)")
    assert message == "Boom"
    assert trace == "at foo (a.js:1:1)"


def test_split_after_trailing_error_colon():
    message, trace = split_error_message("TypeError:\nundefined is not a function")
    assert message == "TypeError:"
    assert trace == "undefined is not a function"


def test_long_text_falls_back_to_first_frame_like_line():
    text = ("Locator resolution failed for the submit button " * 5) + "\n/app/src/pages/login.ts:88 click"
    message, trace = split_error_message(text)

    assert message.startswith("Locator resolution failed")
    assert trace == "/app/src/pages/login.ts:88 click"


def test_no_split_point_never_duplicates_text():
    message, trace = split_error_message("Element not visible")
    assert (message, trace) == ("Element not visible", None)


def test_empty_error_is_absent():
    assert split_error_message(None) == (None, None)
    assert split_error_message("") == (None, None)
