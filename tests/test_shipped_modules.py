from __future__ import annotations

import os
from collections import namedtuple

import pytest

from rites.core import preflight
from rites.core.config.manager import SHIPPED_MODULES_DIR
from rites.core.modules.discovery import ModuleRegistry
from rites.core.modules.models import ModuleState
from rites.core.orchestrator import Orchestrator


_Usage = namedtuple("_Usage", "total used free percent")


@pytest.fixture
def shipped(config_manager, home):
    config_manager.apply_overrides(
        {
            "paths": {"modules_dir": SHIPPED_MODULES_DIR},
            "snapshots": {"base_dir": os.path.join(os.path.dirname(home), "snaps"), "targets": ["~/.bashrc", "~/.vimrc"]},
            "module_settings": {"00-prereqs": {"allow_root": True, "required_commands": ["sh"], "optional_commands": []}},
        }
    )
    return config_manager


def test_shipped_modules_are_discoverable_without_import():
    reg = ModuleRegistry(modules_dir=SHIPPED_MODULES_DIR)
    assert reg.list_modules()[:2] == ["00-prereqs", "10-backup"]
    meta = reg.metadata("10-backup")
    assert meta.status == "ok"
    assert meta.dependencies == ["00-prereqs"]


def test_prereqs_and_backup_run_all(shipped, home):
    with open(os.path.join(home, ".bashrc"), "w", encoding="utf-8") as f:
        f.write("export X=1")
    orch = Orchestrator(config=shipped, handle_signals=False)
    summary = orch.run_all()
    assert [o.state for o in summary.outcomes] == [ModuleState.completed, ModuleState.completed]
    assert os.path.isdir(os.path.join(home, ".config"))
    assert os.path.isdir(os.path.join(home, ".local", "bin"))
    snap = orch.ctx.active_snapshot
    assert snap is not None
    assert snap.manifest_paths() == [os.path.join(home, ".bashrc")]
    assert summary.outcomes[1].snapshot == snap.root
    assert any("snapshot" in line for line in orch.ctx.recorder.read("10-backup"))


def test_backup_rollback_restores_snapshot(shipped, home):
    bashrc = os.path.join(home, ".bashrc")
    with open(bashrc, "w", encoding="utf-8") as f:
        f.write("export X=1")
    Orchestrator(config=shipped, handle_signals=False).run("10-backup")
    with open(bashrc, "w", encoding="utf-8") as f:
        f.write("corrupted")

    out = Orchestrator(config=shipped, handle_signals=False).rollback("10-backup")
    assert out.state == ModuleState.rolled_back
    with open(bashrc, "r", encoding="utf-8") as f:
        assert f.read() == "export X=1"


def test_backup_validation_fails_on_low_disk(shipped, monkeypatch):
    monkeypatch.setattr(preflight.psutil, "disk_usage", lambda _p: _Usage(10**9, 10**9 - 10 * 1024 * 1024, 10 * 1024 * 1024, 99.0))
    out = Orchestrator(config=shipped, handle_signals=False).run("10-backup")
    assert out.state == ModuleState.validation_failed


def test_prereqs_fail_when_required_command_missing(shipped, monkeypatch):
    shipped.apply_overrides({"module_settings": {"00-prereqs": {"allow_root": True, "required_commands": ["definitely-not-a-command-xyz"]}}})
    out = Orchestrator(config=shipped, handle_signals=False).run("00-prereqs")
    assert out.state == ModuleState.validation_failed


def test_dry_run_changes_nothing(shipped, home):
    with open(os.path.join(home, ".bashrc"), "w", encoding="utf-8") as f:
        f.write("x")
    orch = Orchestrator(config=shipped, dry_run=True, handle_signals=False)
    summary = orch.run_all()
    assert summary.ok
    assert not os.path.exists(os.path.join(home, ".config"))
    assert orch.ctx.active_snapshot is None
    assert orch.snapshots.list_snapshots() == []


def test_prereqs_explicit_rollback_in_fresh_process_removes_created_dirs(shipped, home):
    os.makedirs(os.path.join(home, ".cache"))
    out = Orchestrator(config=shipped, handle_signals=False).run("00-prereqs")
    assert out.state == ModuleState.completed
    assert os.path.isdir(os.path.join(home, ".local", "share"))

    back = Orchestrator(config=shipped, handle_signals=False).rollback("00-prereqs")
    assert back.state == ModuleState.rolled_back
    assert not os.path.exists(os.path.join(home, ".config"))
    assert not os.path.exists(os.path.join(home, ".local"))
    # existed before the run, so it is not ours to remove
    assert os.path.isdir(os.path.join(home, ".cache"))


def test_prereqs_rollback_keeps_directories_that_gained_content(shipped, home):
    Orchestrator(config=shipped, handle_signals=False).run("00-prereqs")
    with open(os.path.join(home, ".config", "keep.toml"), "w", encoding="utf-8") as f:
        f.write("x")
    back = Orchestrator(config=shipped, handle_signals=False).rollback("00-prereqs")
    assert back.state == ModuleState.rolled_back
    assert os.path.isfile(os.path.join(home, ".config", "keep.toml"))
    assert not os.path.exists(os.path.join(home, ".local", "bin"))


def test_prereqs_rollback_without_any_record_fails(module_ctx):
    mod = ModuleRegistry(modules_dir=SHIPPED_MODULES_DIR).load("00-prereqs", module_ctx)
    assert module_ctx.recorder is None
    assert mod.rollback() is False
