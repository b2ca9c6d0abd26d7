from __future__ import annotations

import json
import os

from rites.cli import main
from tests.helpers.modules import write_module


def _argv(tmp_path, home, modules_dir, *rest):
    return ["--root", str(tmp_path / "root"), "--home", home, "--modules-dir", modules_dir, *rest]


def test_run_all_scenario_exit_code_and_summary(tmp_path, home, modules_dir, capsys):
    write_module(modules_dir, "00-a")
    write_module(modules_dir, "10-b", execute="fail", rollback="ok")
    write_module(modules_dir, "20-c")
    rc = main(_argv(tmp_path, home, modules_dir, "run-all"))
    out = capsys.readouterr().out
    assert rc == 1
    assert "00-a: completed" in out
    assert "10-b: rolled_back" in out
    assert "20-c: blocked" in out


def test_run_success_and_status(tmp_path, home, modules_dir, capsys):
    write_module(modules_dir, "00-a")
    assert main(_argv(tmp_path, home, modules_dir, "run", "00-a")) == 0
    capsys.readouterr()
    assert main(_argv(tmp_path, home, modules_dir, "--json", "status", "00-a")) == 0
    st = json.loads(capsys.readouterr().out)
    assert st == {"00-a": {"state": "completed", "source": "last_run"}}


def test_rollback_failed_exit_code(tmp_path, home, modules_dir, capsys):
    write_module(modules_dir, "00-a", execute="raise", rollback="fail")
    rc = main(_argv(tmp_path, home, modules_dir, "run", "00-a"))
    out = capsys.readouterr().out
    assert rc == 3
    assert "MANUAL INTERVENTION REQUIRED" in out


def test_validation_failure_exit_code(tmp_path, home, modules_dir):
    write_module(modules_dir, "00-a", validate="fail")
    assert main(_argv(tmp_path, home, modules_dir, "run", "00-a")) == 1


def test_configuration_errors_exit_2(tmp_path, home, modules_dir):
    write_module(modules_dir, "00-a")
    assert main(_argv(tmp_path, home, modules_dir, "run", "99-nope")) == 2
    assert main(_argv(tmp_path, home, str(tmp_path / "missing"), "run-all")) == 2

    root = tmp_path / "broken"
    os.makedirs(root / "config")
    (root / "config" / "rites.json").write_text("{oops", encoding="utf-8")
    assert main(["--root", str(root), "list"]) == 2


def test_interrupted_run_exits_130(tmp_path, home, modules_dir):
    path = os.path.join(modules_dir, "00-a.py")
    with open(path, "w", encoding="utf-8") as f:
        f.write(
            "from rites.core.modules.contract import ProvisioningModule\n\n"
            "MODULE_META = {'name': '00-a'}\n\n\n"
            "class Module(ProvisioningModule):\n"
            "    def validate(self):\n        return True\n\n"
            "    def execute(self):\n        raise KeyboardInterrupt()\n\n"
            "    def rollback(self):\n        return True\n"
        )
    assert main(_argv(tmp_path, home, modules_dir, "run-all")) == 130
    with open(tmp_path / "root" / "state" / "last_run.json", "r", encoding="utf-8") as f:
        assert json.load(f)["modules"]["00-a"] == "rolled_back"


def test_skip_flag_and_env(tmp_path, home, modules_dir, capsys, monkeypatch):
    write_module(modules_dir, "00-a")
    write_module(modules_dir, "10-devtools")
    write_module(modules_dir, "20-c")
    monkeypatch.setenv("SKIP_20_C", "1")
    assert main(_argv(tmp_path, home, modules_dir, "--skip", "devtools", "run-all")) == 0
    out = capsys.readouterr().out
    assert "10-devtools: skipped" in out
    assert "20-c: skipped" in out


def test_list_and_info(tmp_path, home, modules_dir, capsys):
    write_module(modules_dir, "10-b")
    write_module(modules_dir, "00-a")
    assert main(_argv(tmp_path, home, modules_dir, "--json", "list")) == 0
    items = json.loads(capsys.readouterr().out)
    assert [m["name"] for m in items] == ["00-a", "10-b"]
    assert main(_argv(tmp_path, home, modules_dir, "info", "10-b")) == 0
    assert "synthetic 10-b" in capsys.readouterr().out


def test_snapshot_commands(tmp_path, home, modules_dir, capsys):
    bashrc = os.path.join(home, ".bashrc")
    with open(bashrc, "w", encoding="utf-8") as f:
        f.write("export X=1")
    assert main(_argv(tmp_path, home, modules_dir, "snapshot", "create", "--target", "~/.bashrc")) == 0
    capsys.readouterr()
    assert main(_argv(tmp_path, home, modules_dir, "--json", "snapshot", "verify")) == 0
    assert json.loads(capsys.readouterr().out)["ok"] is True

    with open(bashrc, "w", encoding="utf-8") as f:
        f.write("corrupted")
    assert main(_argv(tmp_path, home, modules_dir, "--json", "snapshot", "restore")) == 0
    res = json.loads(capsys.readouterr().out)
    assert (res["restored"], res["failed"]) == (1, 0)
    with open(bashrc, "r", encoding="utf-8") as f:
        assert f.read() == "export X=1"

    assert main(_argv(tmp_path, home, modules_dir, "--json", "snapshot", "list")) == 0
    assert len(json.loads(capsys.readouterr().out)) == 1


def test_snapshot_verify_without_snapshots_fails(tmp_path, home, modules_dir):
    assert main(_argv(tmp_path, home, modules_dir, "snapshot", "verify")) == 1
