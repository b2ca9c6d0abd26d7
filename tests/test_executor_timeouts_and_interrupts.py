from __future__ import annotations

import errno
import json
import os
import time

import pytest

import rites.core.backup.store as store_mod

from rites.core.errors import RunInterrupted
from rites.core.events import RunJournal
from rites.core.modules.contract import ProvisioningModule
from rites.core.modules.executor import LifecycleExecutor
from rites.core.modules.models import LifecycleStep, ModuleState
from rites.core.modules.state import ModuleStateStore
from tests.helpers.modules import StaticRegistry, make_module_class


def test_step_timeout_on_execute_refuses_rollback_while_step_runs(module_ctx):
    calls = []
    cls = make_module_class(execute="hang", rollback="ok", calls=calls)
    store = ModuleStateStore()
    ex = LifecycleExecutor(registry=StaticRegistry({"50-fake": cls}), store=store, ctx=module_ctx, step_timeout_seconds=0.2)
    out = ex.run_module("50-fake")
    assert out.state == ModuleState.rollback_failed
    assert out.error["code"] == "step_timeout"
    assert "still running" in out.rollback_error["user_message"]
    assert "Manual cleanup required" in out.rollback_error["user_message"]
    assert "rollback" not in calls


def test_validate_timeout_is_a_validation_failure(module_ctx):
    cls = make_module_class(validate="hang")
    out = LifecycleExecutor(registry=StaticRegistry({"50-fake": cls}), store=ModuleStateStore(), ctx=module_ctx, step_timeout_seconds=0.2).run_module("50-fake")
    assert out.state == ModuleState.validation_failed
    assert out.failed_step == LifecycleStep.validate


@pytest.mark.parametrize("timeout", [0, 5])
def test_interrupt_marks_module_and_attempts_rollback(module_ctx, timeout):
    calls = []
    cls = make_module_class(execute="interrupt", rollback="ok", calls=calls)
    store = ModuleStateStore()
    ex = LifecycleExecutor(registry=StaticRegistry({"50-fake": cls}), store=store, ctx=module_ctx, step_timeout_seconds=timeout)
    with pytest.raises(KeyboardInterrupt):
        ex.run_module("50-fake")
    assert calls == ["validate", "execute", "rollback"]
    assert store.get("50-fake") == ModuleState.rolled_back
    assert ModuleState.execution_failed in [s for _, s in store.history("50-fake")]


def test_interrupt_without_rollback_leaves_rollback_failed(module_ctx):
    cls = make_module_class(execute="interrupt")
    store = ModuleStateStore()
    ex = LifecycleExecutor(registry=StaticRegistry({"50-fake": cls}), store=store, ctx=module_ctx)
    with pytest.raises(KeyboardInterrupt):
        ex.run_module("50-fake")
    assert store.get("50-fake") == ModuleState.rollback_failed


def test_run_interrupted_signal_path_is_reraised(module_ctx):
    calls = []

    def execute(self):
        calls.append("execute")
        raise RunInterrupted("Interrupted by SIGTERM", signal="SIGTERM")

    cls = make_module_class(rollback="ok", calls=calls)
    cls.execute = execute
    store = ModuleStateStore()
    ex = LifecycleExecutor(registry=StaticRegistry({"50-fake": cls}), store=store, ctx=module_ctx, step_timeout_seconds=0)
    with pytest.raises(RunInterrupted):
        ex.run_module("50-fake")
    assert store.get("50-fake") == ModuleState.rolled_back


def test_every_transition_is_written_to_event_log(tmp_path, module_ctx):
    ev = RunJournal(str(tmp_path / "events.jsonl"), trace_id="t-123")
    cls = make_module_class(execute="fail", rollback="ok")
    ex = LifecycleExecutor(registry=StaticRegistry({"50-fake": cls}), store=ModuleStateStore(), ctx=module_ctx, events=ev)
    ex.run_module("50-fake")
    lines = (tmp_path / "events.jsonl").read_text(encoding="utf-8").splitlines()
    events = [json.loads(x) for x in lines]
    assert all(e["trace_id"] == "t-123" for e in events)
    assert [e["state"] for e in events] == ["executing", "execution_failed", "rolled_back"]


def _write(path, text):
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


def _read(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


class _SnapshotThenSlowWrite(ProvisioningModule):
    MODULE_META = {"name": "50-dotfiles", "description": "", "version": "0.0.1", "dependencies": []}
    calls: list = []

    def validate(self):
        return True

    def execute(self):
        self.ctx.create_snapshot(["~/.bashrc"], module=self.name)
        time.sleep(0.6)
        _write(self.ctx.expand("~/.bashrc"), "mutated")
        return True

    def rollback(self):
        self.calls.append("rollback")
        return self.ctx.restore_active_snapshot().ok


def test_timed_out_step_still_running_is_never_rolled_back_underneath(module_ctx, home):
    bashrc = os.path.join(home, ".bashrc")
    _write(bashrc, "orig")
    _SnapshotThenSlowWrite.calls = []
    ex = LifecycleExecutor(registry=StaticRegistry({"50-dotfiles": _SnapshotThenSlowWrite}), store=ModuleStateStore(), ctx=module_ctx, step_timeout_seconds=0.3)
    out = ex.run_module("50-dotfiles")

    assert out.state == ModuleState.rollback_failed
    assert _SnapshotThenSlowWrite.calls == []
    assert module_ctx.active_snapshot is not None
    assert module_ctx.active_snapshot.root in out.rollback_error["user_message"]
    time.sleep(0.6)
    assert _read(bashrc) == "mutated"


class _SnapshotThenFail(ProvisioningModule):
    MODULE_META = {"name": "50-dotfiles", "description": "", "version": "0.0.1", "dependencies": []}

    def validate(self):
        return True

    def execute(self):
        self.ctx.create_snapshot(["~/.bashrc"], module=self.name)
        return False

    def rollback(self):
        return self.ctx.restore_active_snapshot().ok


def test_automatic_rollback_never_restores_an_older_snapshot(module_ctx, home, monkeypatch):
    bashrc = os.path.join(home, ".bashrc")
    _write(bashrc, "OLD from last week")
    older = module_ctx.snapshots.create_snapshot(["~/.bashrc"])
    _write(bashrc, "CURRENT user edits")

    def no_space(handle):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(store_mod, "write_restore_script", no_space)
    ex = LifecycleExecutor(registry=StaticRegistry({"50-dotfiles": _SnapshotThenFail}), store=ModuleStateStore(), ctx=module_ctx, step_timeout_seconds=0)
    out = ex.run_module("50-dotfiles")

    assert out.state == ModuleState.rollback_failed
    assert out.failed_step == LifecycleStep.execute
    assert module_ctx.active_snapshot is None
    assert _read(bashrc) == "CURRENT user edits"
    assert module_ctx.snapshots.latest().root == older.root


def test_explicit_rollback_adopts_latest_snapshot(module_ctx, home):
    bashrc = os.path.join(home, ".bashrc")
    _write(bashrc, "before")
    module_ctx.snapshots.create_snapshot(["~/.bashrc"])
    _write(bashrc, "after")

    store = ModuleStateStore()
    store.adopt("50-dotfiles", ModuleState.completed)
    ex = LifecycleExecutor(registry=StaticRegistry({"50-dotfiles": _SnapshotThenFail}), store=store, ctx=module_ctx, step_timeout_seconds=0)
    out = ex.rollback_module("50-dotfiles")

    assert out.state == ModuleState.rolled_back
    assert _read(bashrc) == "before"
