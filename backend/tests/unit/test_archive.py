"""Unit tests for the run archive assembler.

Total: 5 tests
"""

from __future__ import annotations

import zipfile
from unittest.mock import AsyncMock

import pytest

from appraise.core.archive import ArchiveAssembler, RunArtifacts
from appraise.core.errors import ArchiveNoFiles, RunNotFound


def _names(buf) -> list[str]:
    with zipfile.ZipFile(buf) as zf:
        return sorted(zf.namelist())


async def test_missing_log_with_two_traces_contains_exactly_the_traces(tmp_path):
    trace_a = tmp_path / "a" / "trace.zip"
    trace_b = tmp_path / "b.zip"
    trace_a.parent.mkdir()
    trace_a.write_bytes(b"trace-a")
    trace_b.write_bytes(b"trace-b")
    artifacts = RunArtifacts(
        log_path=str(tmp_path / "missing.log"),
        trace_paths=[str(trace_a), str(trace_b)],
    )
    assembler = ArchiveAssembler(AsyncMock(return_value=artifacts))

    buf = await assembler.build_archive("run-1")

    assert buf.tell() == 0
    assert _names(buf) == ["traces/b.zip", "traces/trace.zip"]


async def test_log_and_traces_are_grouped_by_folder(tmp_path):
    log = tmp_path / "test-run-1.log"
    log.write_text("[2026-01-01T00:00:00+00:00] [STDOUT] hi", encoding="utf-8")
    trace = tmp_path / "t.zip"
    trace.write_bytes(b"x")
    assembler = ArchiveAssembler(
        AsyncMock(return_value=RunArtifacts(log_path=str(log), trace_paths=[str(trace)]))
    )

    buf = await assembler.build_archive("run-1")

    assert _names(buf) == ["logs/test-run-1.log", "traces/t.zip"]


def test_traces_with_same_file_name_are_deduplicated(tmp_path):
    paths = []
    for folder in ("one", "two"):
        (tmp_path / folder).mkdir()
        trace = tmp_path / folder / "trace.zip"
        trace.write_bytes(folder.encode())
        paths.append(str(trace))
    assembler = ArchiveAssembler(AsyncMock())

    buf = assembler.assemble("run-1", RunArtifacts(trace_paths=paths))

    assert _names(buf) == ["traces/trace.zip", "traces/trace_2.zip"]


async def test_no_files_raises_archive_no_files(tmp_path):
    artifacts = RunArtifacts(log_path=str(tmp_path / "gone.log"), trace_paths=[str(tmp_path / "gone.zip")])
    assembler = ArchiveAssembler(AsyncMock(return_value=artifacts))

    with pytest.raises(ArchiveNoFiles):
        await assembler.build_archive("run-1")


async def test_unknown_run_raises_run_not_found():
    assembler = ArchiveAssembler(AsyncMock(return_value=None))

    with pytest.raises(RunNotFound):
        await assembler.build_archive("ghost")
