from __future__ import annotations

"""
rites command line.

Exit codes: 0 success, 1 lifecycle failure, 2 configuration error,
3 rollback failed / manual intervention required, 130 interrupted.
"""

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from rites.core.config.manager import ConfigManager
from rites.core.config.paths import RitesFsPaths
from rites.core.errors import ConfigError, ModuleLoadError, RunInterrupted, SnapshotError, StateTransitionError, UnknownModuleError
from rites.core.logger import setup_logging
from rites.core.modules.cli import module_info_lines, modules_list_lines, outcome_lines, status_lines, summary_lines
from rites.core.modules.models import ModuleOutcome, ModuleState
from rites.core.orchestrator import Orchestrator


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_MANUAL = 3
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="rites", description="Ordered, rollback-capable machine provisioning")
    ap.add_argument("--root", default=".", help="State root holding config/, state/ and logs/.")
    ap.add_argument("--home", default=None, help="Home directory to provision (overrides config paths.home).")
    ap.add_argument("--modules-dir", default=None, help="Directory of NN-slug.py modules (overrides config).")
    ap.add_argument("--skip", action="append", default=[], metavar="PATTERN", help="Skip modules whose name contains PATTERN (repeatable).")
    ap.add_argument("--dry-run", action="store_true", help="Drive the lifecycle without letting modules change anything.")
    ap.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    ap.add_argument("--json", action="store_true", help="Machine-readable output.")

    sub = ap.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List modules in execution order.")
    p = sub.add_parser("info", help="Show a module's declared metadata.")
    p.add_argument("module")
    p = sub.add_parser("run", help="Run one module through its full lifecycle.")
    p.add_argument("module")
    p = sub.add_parser("run-all", help="Run all modules in priority order.")
    p.add_argument("--keep-going", action="store_true", help="Continue past failed modules instead of stopping.")
    p = sub.add_parser("status", help="Show module state.")
    p.add_argument("module", nargs="?")
    p = sub.add_parser("rollback", help="Roll back a module.")
    p.add_argument("module")
    p.add_argument("--force", action="store_true", help="Roll back even when no rollback-able state was recorded.")

    snap = sub.add_parser("snapshot", help="Snapshot store operations.")
    ssub = snap.add_subparsers(dest="snapshot_command", required=True)
    p = ssub.add_parser("create", help="Snapshot the configured (or given) targets.")
    p.add_argument("--target", action="append", default=[], help="Path to capture (repeatable; default: configured targets).")
    p = ssub.add_parser("verify", help="Verify a snapshot (default: latest).")
    p.add_argument("path", nargs="?")
    p = ssub.add_parser("restore", help="Restore a snapshot (default: latest).")
    p.add_argument("path", nargs="?")
    ssub.add_parser("list", help="List snapshots, oldest first.")
    return ap


def _emit(args: argparse.Namespace, payload: Any, lines: List[str]) -> None:
    if args.json:
        print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
    else:
        for line in lines:
            print(line)


def _outcome_exit(outcome: ModuleOutcome) -> int:
    if outcome.manual_intervention_required:
        return EXIT_MANUAL
    return EXIT_OK if outcome.ok else EXIT_FAILURE


def _load_config(args: argparse.Namespace) -> ConfigManager:
    cm = ConfigManager(fs=RitesFsPaths(args.root))
    cm.load_all()
    overrides: Dict[str, Any] = {}
    if args.home:
        overrides.setdefault("paths", {})["home"] = args.home
    if args.modules_dir:
        overrides.setdefault("paths", {})["modules_dir"] = args.modules_dir
    if overrides:
        cm.apply_overrides(overrides)
    return cm


def _snapshot_command(args: argparse.Namespace, orch: Orchestrator) -> int:
    store = orch.snapshots
    if args.snapshot_command == "list":
        items = store.list_snapshots()
        _emit(args, [h.root for h in items], [h.root for h in items] or ["(no snapshots)"])
        return EXIT_OK
    if args.snapshot_command == "create":
        handle = store.create_snapshot(args.target or orch.ctx.snapshot_targets)
        paths = handle.manifest_paths()
        _emit(args, {"root": handle.root, "captured": paths}, [handle.root] + [f"  {p}" for p in paths])
        return EXIT_OK

    handle = store.load(args.path) if args.path else store.latest()
    if handle is None:
        print("No snapshot found.", file=sys.stderr)
        return EXIT_FAILURE
    if args.snapshot_command == "verify":
        res = store.verify_snapshot(handle)
        _emit(args, {"root": handle.root, "ok": res.ok, "errors": res.errors, "checked_files": res.checked_files}, [f"{handle.root}: {'ok' if res.ok else 'FAILED'}"] + [f"  {e}" for e in res.errors])
        return EXIT_OK if res.ok else EXIT_FAILURE
    res = store.restore(handle)
    lines = [f"restored: {res.restored_count}, failed: {res.failed_count}"]
    if not res.ok:
        lines.append(f"Manual intervention required: inspect {handle.root}")
    _emit(args, {"root": handle.root, "restored": res.restored_count, "failed": res.failed_count, "output": res.output}, lines)
    return EXIT_OK if res.ok else EXIT_MANUAL


def _dispatch(args: argparse.Namespace, orch: Orchestrator) -> int:
    if args.command == "list":
        metas = [orch.metadata(n) for n in orch.list_modules()]
        _emit(args, [m.model_dump(mode="json") for m in metas], modules_list_lines(metas))
        return EXIT_OK
    if args.command == "info":
        orch.registry.require(args.module)
        meta = orch.metadata(args.module)
        _emit(args, meta.model_dump(mode="json"), module_info_lines(meta))
        return EXIT_OK if meta.status == "ok" else EXIT_FAILURE
    if args.command == "status":
        st = orch.status(args.module)
        _emit(args, st, status_lines(st))
        return EXIT_OK
    if args.command == "run":
        outcome = orch.run(args.module)
        _emit(args, outcome.model_dump(mode="json"), outcome_lines(outcome))
        return _outcome_exit(outcome)
    if args.command == "run-all":
        summary = orch.run_all(keep_going=True if args.keep_going else None)
        payload = summary.model_dump(mode="json")
        payload["blocked"] = summary.blocked
        _emit(args, payload, summary_lines(summary))
        return summary.exit_code
    if args.command == "rollback":
        outcome = orch.rollback(args.module, force=args.force)
        _emit(args, outcome.model_dump(mode="json"), outcome_lines(outcome))
        if outcome.state == ModuleState.rolled_back:
            return EXIT_OK
        return EXIT_MANUAL if outcome.manual_intervention_required else EXIT_FAILURE
    if args.command == "snapshot":
        return _snapshot_command(args, orch)
    raise ValueError(f"unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cm = _load_config(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    cfg = cm.get()
    logger = setup_logging(cm.fs.logs_dir, level="DEBUG" if args.verbose else cfg.logging.level, max_bytes=cfg.logging.max_bytes, backup_count=cfg.logging.backup_count)
    try:
        orch = Orchestrator(config=cm, logger=logger, dry_run=args.dry_run, extra_skip_patterns=args.skip)
        return _dispatch(args, orch)
    except (ConfigError, UnknownModuleError, ModuleLoadError) as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG
    except (KeyboardInterrupt, RunInterrupted):
        logger.error("Interrupted.")
        return EXIT_INTERRUPTED
    except (StateTransitionError, SnapshotError) as e:
        logger.error(str(e))
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
