from __future__ import annotations

import json

from rites.core.errors import RollbackError, Severity
from rites.core.events import RunJournal, redact
from rites.core.records import ActionRecorder


def test_journal_writes_typed_lifecycle_events(tmp_path):
    path = tmp_path / "logs" / "events.jsonl"
    journal = RunJournal(str(path))
    journal.emit("module.transition", module="10-backup", state="executing")
    journal.emit("module.transition", module="10-backup", state="completed", step="verify")

    lines = [json.loads(x) for x in path.read_text(encoding="utf-8").splitlines()]
    assert [(e["module"], e["state"]) for e in lines] == [("10-backup", "executing"), ("10-backup", "completed")]
    assert lines[1]["step"] == "verify"
    assert "step" not in lines[0]
    assert {e["trace_id"] for e in lines} == {journal.trace_id}
    assert len(journal.trace_id) == 32


def test_journal_redacts_secret_keys_but_not_plain_key_fields(tmp_path):
    journal = RunJournal(str(tmp_path / "events.jsonl"))
    ev = journal.emit(
        "module.skipped",
        module="50-secrets",
        details={"token": "abc", "nested": {"password": "pw"}, "key": "SKIP_50_SECRETS", "reason": "env"},
    )
    assert ev.details["token"] == "***REDACTED***"
    assert ev.details["nested"]["password"] == "***REDACTED***"
    assert ev.details["key"] == "SKIP_50_SECRETS"
    assert ev.details["reason"] == "env"


def test_journal_read_filters_by_run_and_module(tmp_path):
    path = str(tmp_path / "events.jsonl")
    first = RunJournal(path, trace_id="run-1")
    second = RunJournal(path, trace_id="run-2")
    first.emit("run.start")
    first.emit("module.transition", module="00-prereqs", state="executing")
    second.emit("module.transition", module="10-backup", state="executing")
    with open(path, "a", encoding="utf-8") as f:
        f.write('{"ts": "torn')

    assert [e.event for e in first.read(trace_id="run-1")] == ["run.start", "module.transition"]
    assert [e.trace_id for e in first.read(module="10-backup")] == ["run-2"]
    assert len(second.read()) == 3


def test_action_recorder_one_file_per_module(tmp_path):
    rec = ActionRecorder(str(tmp_path / "records"))
    rec.record("10-backup", "snapshot created")
    rec.record("10-backup", "restore: 1 restored, 0 failed")
    rec.record("../evil", "x")
    lines = rec.read("10-backup")
    assert len(lines) == 2
    assert lines[0].endswith("snapshot created")
    assert rec.actions("10-backup") == ["snapshot created", "restore: 1 restored, 0 failed"]
    assert rec.path_for("../evil").startswith(str(tmp_path / "records"))
    assert rec.read("99-none") == []


def test_rollback_error_is_critical_and_redacted():
    err = RollbackError("Rollback failed for 10-backup: boom. Manual cleanup required.", module="10-backup", secret="s")
    d = err.to_dict()
    assert d["severity"] == Severity.CRITICAL.value
    assert d["recoverable"] is False
    assert d["context"]["secret"] == "***REDACTED***"
    assert d["context"]["module"] == "10-backup"
    assert str(err).startswith("Rollback failed")
    assert redact({"api_key": 1, "key": 2}) == {"api_key": "***REDACTED***", "key": 2}
