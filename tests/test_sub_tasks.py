"""Tests for the sub-task manager."""

import threading

import pytest

from steward.agent_loop import ABORTED_SENTINEL, AgentConfig
from steward.errors import HttpFailure
from steward.event_bus import SUB_TASK_CANCELLED
from steward.sub_tasks import COMPLETED, ERROR, SubTaskManager

from helpers import ScriptedProvider, text_result


def _manager(host, script_for_prompt, **config):
    """Manager whose children answer from ``script_for_prompt(prompt)``."""

    def factory(child_config):
        def script(messages):
            return script_for_prompt(messages[0].content)
        return ScriptedProvider(script)

    return SubTaskManager(host, AgentConfig(**config), provider_factory=factory)


def test_child_config_is_silent_and_clamped(host):
    errors = []

    def record_error(exc):
        errors.append(exc)

    parent = AgentConfig(
        name="main",
        on_text=print,
        on_tool_start=lambda n, i: None,
        on_permission_request=lambda r: True,
        on_error=record_error,
    )
    child = SubTaskManager(host, parent).child_config()
    assert child.max_turns == 20
    assert child.enable_sub_tasks is False
    assert child.name == "main/sub"
    assert child.on_text is None and child.on_tool_start is None
    assert child.on_permission_request is None
    assert child.on_error is record_error

    assert SubTaskManager(host, AgentConfig(max_turns=5)).child_config().max_turns == 5


def test_child_errors_reach_parent_callback(host):
    errors = []

    def factory(child_config):
        return ScriptedProvider([HttpFailure("unauthorized", 401, "bad key")])

    manager = SubTaskManager(host, AgentConfig(on_error=errors.append), provider_factory=factory)
    try:
        result = manager.wait_for(manager.spawn("hello"), timeout=5)
    finally:
        manager.shutdown(wait=True)

    assert result.result.startswith("[steward error:")
    assert len(errors) == 1 and isinstance(errors[0], HttpFailure)


def test_wait_all_reports_every_task_when_one_fails(host):
    gate = threading.Event()

    def answer(prompt):
        gate.wait(5)
        if prompt == "boom":
            raise RuntimeError("kaboom")
        return text_result(f"done: {prompt}")

    manager = _manager(host, answer)
    try:
        ids = [manager.spawn(p) for p in ("alpha", "boom", "gamma")]
        assert ids == ["1", "2", "3"]
        assert manager.has_running()
        assert len(manager.get_status()["running"]) == 3

        releaser = threading.Timer(0.1, gate.set)
        releaser.start()
        results = manager.wait_all()
    finally:
        gate.set()
        manager.shutdown(wait=True)

    assert [r.id for r in results] == ["1", "2", "3"]
    assert sorted(r.status for r in results) == [COMPLETED, COMPLETED, ERROR]
    failed = results[1]
    assert failed.status == ERROR and failed.error == "kaboom"
    assert results[0].result == "done: alpha"
    assert not manager.has_running()
    assert sorted(r.id for r in manager.get_status()["completed"]) == ["1", "2", "3"]


def test_wait_for_caches_results_and_rejects_unknown_ids(host):
    manager = _manager(host, lambda prompt: text_result(prompt.upper()))
    try:
        task_id = manager.spawn("hello", description="greeting")
        first = manager.wait_for(task_id, timeout=5)
        again = manager.wait_for(task_id)
    finally:
        manager.shutdown(wait=True)

    assert first.result == "HELLO"
    assert first.prompt == "greeting"
    assert again is first
    with pytest.raises(KeyError):
        manager.wait_for("99")


def test_wait_all_timeout_yields_synthetic_error(host):
    gate = threading.Event()
    manager = _manager(host, lambda prompt: gate.wait(5) and text_result("late"))
    try:
        manager.spawn("slow")
        (result,) = manager.wait_all(timeout=0.05)
        assert result.status == ERROR
        assert result.error == "Still running after 0.05s"
    finally:
        gate.set()
        manager.shutdown(wait=True)


def test_abort_cancels_running_child(host, bus):
    gate = threading.Event()

    def factory(child_config):
        return ScriptedProvider([gate, text_result("never")])

    manager = SubTaskManager(host, AgentConfig(), provider_factory=factory)
    try:
        task_id = manager.spawn("wait forever")
        assert manager.abort(task_id) is True
        result = manager.wait_for(task_id, timeout=5)
    finally:
        manager.shutdown(wait=True)

    assert result.status == COMPLETED
    assert result.result == ABORTED_SENTINEL
    assert manager.abort(task_id) is False
    assert manager.abort("42") is False
    assert len(bus.get_events(types={SUB_TASK_CANCELLED})) == 1


def test_on_update_receives_finished_results(host):
    updates = []
    done = threading.Event()

    def on_update(results):
        updates.append([r.id for r in results])
        if len(results) == 2:
            done.set()

    manager = _manager(host, lambda prompt: text_result("ok"))
    manager.set_on_update(on_update)
    try:
        manager.spawn("a")
        manager.spawn("b")
        assert done.wait(5)
    finally:
        manager.shutdown(wait=True)

    assert sorted(updates[-1]) == ["1", "2"]


def test_children_get_independent_loops(host):
    seen = []
    lock = threading.Lock()

    def answer(prompt):
        with lock:
            seen.append(prompt)
        return text_result(prompt)

    manager = _manager(host, answer)
    try:
        ids = [manager.spawn(f"job {i}") for i in range(4)]
        results = [manager.wait_for(i, timeout=5) for i in ids]
    finally:
        manager.shutdown(wait=True)

    assert [r.result for r in results] == ["job 0", "job 1", "job 2", "job 3"]
    assert sorted(seen) == ["job 0", "job 1", "job 2", "job 3"]
