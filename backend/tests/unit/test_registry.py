"""Unit tests for the process registry.

Total: 8 tests
"""

from __future__ import annotations

import threading

import pytest

from appraise.core.errors import DuplicateRegistration
from appraise.core.process import ProcessKey, ProcessRegistry, SpawnedProcess, SpawnOptions


def _process(run_id: str, *, running: bool = True) -> SpawnedProcess:
    p = SpawnedProcess(ProcessKey(run_id), "npx", ["cucumber-js"], SpawnOptions())
    p.is_running = running
    return p


def test_register_and_get():
    registry = ProcessRegistry()
    proc = _process("run-1")

    registry.register("run-1", proc)

    assert registry.get("run-1") is proc
    assert registry.has("run-1")
    assert registry.size() == 1


def test_get_missing_returns_none():
    assert ProcessRegistry().get("missing") is None


def test_unregister_is_idempotent():
    registry = ProcessRegistry()
    registry.register("run-1", _process("run-1"))

    assert registry.unregister("run-1") is True
    assert registry.unregister("run-1") is False
    assert registry.get("run-1") is None
    assert registry.size() == 0


def test_second_live_process_for_same_run_is_rejected():
    registry = ProcessRegistry()
    first = _process("run-1")
    registry.register("run-1", first)

    with pytest.raises(DuplicateRegistration):
        registry.register("run-1", _process("run-1"))

    assert registry.get("run-1") is first


def test_exited_entry_may_be_replaced():
    registry = ProcessRegistry()
    registry.register("run-1", _process("run-1", running=False))
    replacement = _process("run-1")

    registry.register("run-1", replacement)

    assert registry.get("run-1") is replacement
    assert registry.size() == 1


def test_registering_same_process_twice_is_allowed():
    registry = ProcessRegistry()
    proc = _process("run-1")
    registry.register("run-1", proc)
    registry.register("run-1", proc)

    assert registry.size() == 1


def test_run_ids_and_clear():
    registry = ProcessRegistry()
    registry.register("a", _process("a"))
    registry.register("b", _process("b"))

    assert sorted(registry.run_ids()) == ["a", "b"]
    registry.clear()
    assert registry.size() == 0


def test_concurrent_registration_keeps_one_entry_per_run():
    registry = ProcessRegistry()
    candidates = [_process("shared") for _ in range(16)]
    accepted: list[SpawnedProcess] = []
    lock = threading.Lock()

    def _worker(proc: SpawnedProcess) -> None:
        try:
            registry.register("shared", proc)
        except DuplicateRegistration:
            return
        with lock:
            accepted.append(proc)

    threads = [threading.Thread(target=_worker, args=(p,)) for p in candidates]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(accepted) == 1
    assert registry.size() == 1
    assert registry.get("shared") is accepted[0]
