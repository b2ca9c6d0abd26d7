from __future__ import annotations

"""
Provisioning orchestrator: wires config, registry, skip policy, snapshot store and
executor together for one process, and owns run-level policy (run-all ordering,
abort-on-failure, interrupt handling, the last-run report).
"""

import contextlib
import logging
import os
import signal
import threading
import time
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional

from rites.core.backup.collector import capture
from rites.core.backup.store import SnapshotStore
from rites.core.config.io import atomic_write_json, read_json_file
from rites.core.config.manager import ConfigManager
from rites.core.errors import RunInterrupted, StateTransitionError
from rites.core.events import RunJournal
from rites.core.modules.contract import ModuleContext
from rites.core.modules.discovery import ModuleRegistry
from rites.core.modules.executor import LifecycleExecutor
from rites.core.modules.models import ROLLBACK_SOURCE_STATES, ModuleMetadata, ModuleOutcome, ModuleState, RunSummary
from rites.core.modules.skip import SkipPolicy
from rites.core.modules.state import ModuleStateStore, state_from_value
from rites.core.records import ActionRecorder


@contextlib.contextmanager
def interrupt_guard(logger: Optional[logging.Logger] = None) -> Iterator[None]:
    """
    Turn SIGINT/SIGTERM into RunInterrupted for the duration of a run so the
    executor can mark the in-flight module and roll it back before exit.
    Only installable from the main thread; elsewhere this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):  # noqa: ANN001
        name = signal.Signals(signum).name
        if logger:
            logger.warning(f"Received {name}; stopping after rollback of the current module.")
        raise RunInterrupted(f"Interrupted by {name}", signal=name)

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.getsignal(sig)
        signal.signal(sig, _handler)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


class Orchestrator:
    def __init__(
        self,
        *,
        config: ConfigManager,
        logger: Optional[logging.Logger] = None,
        dry_run: bool = False,
        extra_skip_patterns: Iterable[str] = (),
        env: Optional[Mapping[str, str]] = None,
        capture_fn: Callable[[str, str], None] = capture,
        handle_signals: bool = True,
    ):
        self.config = config
        self.fs = config.fs
        self.logger = logger or logging.getLogger("rites")
        self.dry_run = bool(dry_run)
        self.handle_signals = bool(handle_signals)
        cfg = config.get()

        self.home = config.home_dir()
        self.stop_on_failure = bool(cfg.executor.stop_on_failure)
        self.skipped_satisfies = bool(cfg.skip.skipped_satisfies_dependencies)

        self.snapshots = SnapshotStore.from_config(config, logger=self.logger, capture_fn=capture_fn)
        self.registry = ModuleRegistry(modules_dir=config.modules_dir(), logger=self.logger)
        self.store = ModuleStateStore()
        self.skip_policy = SkipPolicy.from_config(cfg.skip, extra_patterns=extra_skip_patterns, env=env)
        self.events = RunJournal(self.fs.events)
        self.trace_id = self.events.trace_id
        self.ctx = ModuleContext(
            home=self.home,
            snapshots=self.snapshots,
            snapshot_targets=cfg.snapshots.targets,
            module_settings=cfg.module_settings,
            recorder=ActionRecorder(self.fs.records_dir),
            logger=self.logger,
            dry_run=self.dry_run,
        )
        self.executor = LifecycleExecutor(
            registry=self.registry,
            store=self.store,
            ctx=self.ctx,
            skip_policy=self.skip_policy,
            step_timeout_seconds=cfg.executor.step_timeout_seconds,
            events=self.events,
            logger=self.logger,
        )

    # ---------- queries ----------
    def list_modules(self) -> List[str]:
        return self.registry.list_modules()

    def metadata(self, name: str) -> ModuleMetadata:
        return self.registry.metadata(name, self.store)

    def status(self, name: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        """
        In-process state first; otherwise the state recorded by the last run.
        """
        names = [name] if name else self.list_modules()
        if name:
            self.registry.require(name)
        last = self._read_report().get("modules") or {}
        out: Dict[str, Dict[str, Any]] = {}
        for n in names:
            if self.store.known(n):
                out[n] = {"state": self.store.get(n).value, "source": "run"}
            elif self.store.is_skipped(n):
                out[n] = {"state": self.store.get(n).value, "source": "run", "skipped": True}
            elif n in last:
                out[n] = {"state": str(last[n]), "source": "last_run"}
            else:
                out[n] = {"state": ModuleState.not_started.value, "source": "default"}
        return out

    # ---------- commands ----------
    def run(self, name: str) -> ModuleOutcome:
        """Single module, full lifecycle. Does not consult the dependency gate."""
        outcomes: List[ModuleOutcome] = []
        self._emit("run.start", module=name, details={"command": "run", "dry_run": self.dry_run})
        try:
            with self._guard():
                outcome = self.executor.run_module(name)
                outcomes.append(outcome)
                return outcome
        finally:
            self._finish_command("run", outcomes)

    def run_all(self, *, keep_going: Optional[bool] = None) -> RunSummary:
        """
        All modules in priority order. By default stops at the first module that
        does not end completed (or skipped); the rest are reported as blocked.
        """
        stop_on_failure = self.stop_on_failure if keep_going is None else not keep_going
        summary = RunSummary(trace_id=self.trace_id)
        names = self.list_modules()
        self.logger.info(f"Provisioning {len(names)} module(s): {', '.join(names) or '-'}")
        self._emit("run.start", details={"command": "run-all", "modules": names, "dry_run": self.dry_run, "stop_on_failure": stop_on_failure})

        try:
            with self._guard():
                for name in names:
                    if summary.aborted_at is not None:
                        summary.outcomes.append(self._blocked(name, f"run aborted at {summary.aborted_at}"))
                        continue
                    if not self.skip_policy.should_skip(name):
                        unmet = self.registry.unmet_dependencies(name, self.store, skipped_satisfies=self.skipped_satisfies)
                        if unmet:
                            if stop_on_failure:
                                summary.outcomes.append(self._blocked(name, f"dependencies not met: {', '.join(unmet)}"))
                                summary.aborted_at = name
                                continue
                            self.logger.warning(f"[{name}] Dependencies not met ({', '.join(unmet)}); continuing (keep-going)")

                    outcome = self.executor.run_module(name)
                    summary.outcomes.append(outcome)
                    if not outcome.ok and stop_on_failure:
                        self.logger.error(f"Stopping: {name} ended {outcome.state.value}")
                        summary.aborted_at = name
        finally:
            self._finish_command("run-all", summary.outcomes)

        if summary.ok:
            self.logger.info("All modules completed.")
        return summary

    def rollback(self, name: str, *, force: bool = False) -> ModuleOutcome:
        """
        Explicit rollback. In a fresh process the module's state and the run's
        snapshot are taken from the last-run report (or the latest snapshot).
        """
        self.registry.require(name)
        report = self._read_report()
        if not self.store.known(name):
            recorded = state_from_value((report.get("modules") or {}).get(name))
            if recorded in ROLLBACK_SOURCE_STATES:
                self.store.adopt(name, recorded)
            elif force:
                self.logger.warning(f"[{name}] No rollback-able state recorded; assuming completed (--force)")
                self.store.adopt(name, ModuleState.completed)
            else:
                shown = recorded.value if recorded is not None else "none recorded"
                raise StateTransitionError(f"Cannot roll back {name}: last recorded state is {shown}", module=name)
        snap = report.get("active_snapshot")
        if self.ctx.active_snapshot is None and snap and os.path.isdir(str(snap)):
            self.ctx.active_snapshot = self.snapshots.load(str(snap))

        outcomes: List[ModuleOutcome] = []
        self._emit("run.start", module=name, details={"command": "rollback"})
        try:
            with self._guard():
                outcome = self.executor.rollback_module(name)
                outcomes.append(outcome)
                return outcome
        finally:
            self._finish_command("rollback", outcomes)

    # ---------- internals ----------
    def _guard(self):
        return interrupt_guard(self.logger) if self.handle_signals else contextlib.nullcontext()

    def _blocked(self, name: str, reason: str) -> ModuleOutcome:
        self.logger.warning(f"[{name}] Blocked: {reason}")
        self._emit("module.blocked", module=name, details={"reason": reason})
        return ModuleOutcome(name=name, state=self.store.get(name), blocked=True, skip_reason=reason)

    def _emit(self, event: str, *, module: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        try:
            self.events.emit(event, module=module, details=details)
        except OSError as e:
            self.logger.warning(f"Event log write failed: {e}")

    def _read_report(self) -> Dict[str, Any]:
        rr = read_json_file(self.fs.last_run)
        return rr.data if rr.ok else {}

    def _finish_command(self, command: str, outcomes: List[ModuleOutcome]) -> None:
        self._emit("run.finish", details={"command": command, "states": self.store.snapshot(), "skipped": self.store.skipped()})
        try:
            self.write_report(command, outcomes)
        except OSError as e:
            self.logger.warning(f"Could not write run report {self.fs.last_run}: {e}")

    def write_report(self, command: str, outcomes: List[ModuleOutcome]) -> Dict[str, Any]:
        """
        state/last_run.json: informational only, never used for dependency checks.
        Module states from earlier runs are kept unless this run touched them.
        """
        previous = self._read_report()
        modules: Dict[str, str] = dict(previous.get("modules") or {})
        if not self.dry_run:
            modules.update(self.store.snapshot())
        active = self.ctx.active_snapshot.root if self.ctx.active_snapshot is not None else previous.get("active_snapshot")
        report = {
            "trace_id": self.trace_id,
            "command": command,
            "dry_run": self.dry_run,
            "finished_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "home": self.home,
            "modules": modules,
            "skipped": self.store.skipped(),
            "blocked": [o.name for o in outcomes if o.blocked],
            "active_snapshot": active,
            "outcomes": [o.model_dump(mode="json") for o in outcomes],
        }
        atomic_write_json(self.fs.last_run, report)
        return report
