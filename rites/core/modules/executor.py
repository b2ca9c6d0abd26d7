from __future__ import annotations

"""
Lifecycle executor: drives one module through validate -> execute -> verify,
rolling back on execute failure, and records every transition.

Transitions (terminal states marked *):
  not_started -> executing
  executing -> failed*               module could not be loaded
  executing -> validation_failed*    validate() failed, nothing to undo
  executing -> execution_failed      execute() failed, rollback attempted
  execution_failed -> rolled_back* | rollback_failed*
  executing -> verification_failed*  verify() failed, no automatic rollback
  executing -> completed*

A step that overruns its timeout keeps running in an abandoned thread; while
any such thread is alive no rollback is attempted (rollback_failed instead).
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from rites.core.errors import (
    ExecutionError,
    ModuleLoadError,
    PreconditionError,
    RitesError,
    RollbackError,
    RunInterrupted,
    StateTransitionError,
    StepTimeoutError,
    VerificationError,
)
from rites.core.events import RunJournal
from rites.core.modules.contract import ModuleContext, ProvisioningModule
from rites.core.modules.discovery import ModuleRegistry
from rites.core.modules.models import ROLLBACK_SOURCE_STATES, LifecycleStep, ModuleOutcome, ModuleState
from rites.core.modules.skip import SkipPolicy
from rites.core.modules.state import ModuleStateStore


_STEP_ERRORS = {
    LifecycleStep.validate: PreconditionError,
    LifecycleStep.execute: ExecutionError,
    LifecycleStep.verify: VerificationError,
    LifecycleStep.rollback: RollbackError,
}


class LifecycleExecutor:
    def __init__(
        self,
        *,
        registry: ModuleRegistry,
        store: ModuleStateStore,
        ctx: ModuleContext,
        skip_policy: Optional[SkipPolicy] = None,
        step_timeout_seconds: float = 900.0,
        events: Optional[RunJournal] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.registry = registry
        self.store = store
        self.ctx = ctx
        self.skip_policy = skip_policy
        self.step_timeout_seconds = float(step_timeout_seconds or 0)
        self.events = events
        self.logger = logger or logging.getLogger("rites")
        # Step threads that outlived their timeout and may still be mutating the machine.
        self._stray_steps: List[threading.Thread] = []

    # ---------- public API ----------
    def run_module(self, name: str) -> ModuleOutcome:
        t0 = time.time()

        if self.skip_policy is not None:
            decision = self.skip_policy.decide(name)
            if decision.skipped:
                self.store.mark_skipped(name)
                self.logger.info(f"[{name}] Skipped: {decision.reason}")
                self._emit("module.skipped", module=name, details={"reason": decision.reason, "source": decision.source})
                return ModuleOutcome(name=name, state=self.store.get(name), skipped=True, skip_reason=decision.reason, started_at=t0)

        self.registry.require(name)
        self._transition(name, ModuleState.executing)
        self.logger.info(f"[{name}] Starting")

        try:
            module = self.registry.load(name, self.ctx)
        except ModuleLoadError as e:
            return self._finish(name, ModuleState.failed, LifecycleStep.load, e, t0)
        except (KeyboardInterrupt, RunInterrupted):
            self._transition(name, ModuleState.failed, step=LifecycleStep.load)
            raise

        step = LifecycleStep.validate
        try:
            self._invoke(name, step, module.validate)
            step = LifecycleStep.execute
            self._invoke(name, step, module.execute)
            if module.supports_verify:
                step = LifecycleStep.verify
                self._invoke(name, step, module.verify)
        except (KeyboardInterrupt, RunInterrupted):
            self._handle_interrupt(name, module, step)
            raise
        except RitesError as e:
            if step == LifecycleStep.validate:
                return self._finish(name, ModuleState.validation_failed, step, e, t0)
            if step == LifecycleStep.verify:
                return self._finish(name, ModuleState.verification_failed, step, e, t0)
            self._transition(name, ModuleState.execution_failed, step=step, error=e)
            self.logger.error(f"[{name}] Execution failed: {e}")
            state, rb_err = self._attempt_rollback(name, module)
            return self._outcome(name, state, step, e, t0, rollback_error=rb_err)

        return self._finish(name, ModuleState.completed, None, None, t0)

    def rollback_module(self, name: str) -> ModuleOutcome:
        """
        Explicit operator rollback of a module that completed, failed verification
        or failed execution. Uses the run's snapshot, or the latest one on disk.
        """
        t0 = time.time()
        self.registry.require(name)
        cur = self.store.get(name)
        if cur not in ROLLBACK_SOURCE_STATES:
            raise StateTransitionError(f"Cannot roll back {name} from state {cur.value}", module=name, current=cur.value)
        self.ctx.resolve_snapshot()
        self.logger.info(f"[{name}] Rolling back (from {cur.value})")

        try:
            module: Optional[ProvisioningModule] = self.registry.load(name, self.ctx)
        except ModuleLoadError as e:
            self.logger.error(f"[{name}] Cannot load module for rollback: {e}")
            module = None
        state, rb_err = self._attempt_rollback(name, module)
        return self._outcome(name, state, LifecycleStep.rollback if rb_err else None, rb_err, t0, rollback_error=rb_err)

    # ---------- steps ----------
    def _invoke(self, name: str, step: LifecycleStep, fn: Callable[[], Any]) -> None:
        """A step fails when it raises or returns a falsy value."""
        self.logger.debug(f"[{name}] {step.value}()")
        try:
            result = self._call_with_timeout(name, step, fn)
        except (KeyboardInterrupt, RitesError):
            raise
        except (Exception, SystemExit) as e:  # noqa: BLE001
            raise _STEP_ERRORS[step](f"{name}: {step.value}() raised {type(e).__name__}: {e}", module=name, step=step.value) from e
        if not result:
            raise _STEP_ERRORS[step](f"{name}: {step.value}() reported failure", module=name, step=step.value)

    def _call_with_timeout(self, name: str, step: LifecycleStep, fn: Callable[[], Any]) -> Any:
        timeout = self.step_timeout_seconds
        if timeout <= 0:
            return fn()

        box: Dict[str, Any] = {}

        def run():
            try:
                box["result"] = fn()
            except BaseException as e:  # noqa: BLE001
                box["exc"] = e

        th = threading.Thread(target=run, name=f"rites-{name}-{step.value}", daemon=True)
        th.start()
        th.join(timeout=timeout)
        if th.is_alive():
            # The step thread cannot be killed; it is abandoned as a daemon and
            # blocks any rollback until it has finished.
            self._stray_steps.append(th)
            raise StepTimeoutError(f"{name}: {step.value}() did not finish within {timeout:g}s", module=name, step=step.value, timeout=timeout)
        if "exc" in box:
            raise box["exc"]
        return box.get("result")

    def _attempt_rollback(self, name: str, module: Optional[ProvisioningModule]) -> Tuple[ModuleState, Optional[RollbackError]]:
        if module is None or not module.supports_rollback:
            err = RollbackError(self._manual_cleanup_message(name, "no rollback available"), module=name, snapshot=self._snapshot_root())
            self._transition(name, ModuleState.rollback_failed, step=LifecycleStep.rollback, error=err)
            self.logger.critical(f"[{name}] {err}")
            return ModuleState.rollback_failed, err

        running = self._running_strays()
        if running:
            detail = f"{', '.join(th.name for th in running)} still running after its timeout; rollback not attempted"
            err = RollbackError(self._manual_cleanup_message(name, detail), module=name, snapshot=self._snapshot_root())
            self._transition(name, ModuleState.rollback_failed, step=LifecycleStep.rollback, error=err)
            self.logger.critical(f"[{name}] {err}")
            return ModuleState.rollback_failed, err

        self.logger.info(f"[{name}] Attempting rollback...")
        try:
            self._invoke(name, LifecycleStep.rollback, module.rollback)
        except (KeyboardInterrupt, RunInterrupted):
            err = RollbackError(self._manual_cleanup_message(name, "rollback interrupted"), module=name, snapshot=self._snapshot_root())
            self._transition(name, ModuleState.rollback_failed, step=LifecycleStep.rollback, error=err)
            self.logger.critical(f"[{name}] {err}")
            raise
        except RitesError as e:
            err = RollbackError(self._manual_cleanup_message(name, str(e)), module=name, snapshot=self._snapshot_root(), cause=e.code)
            self._transition(name, ModuleState.rollback_failed, step=LifecycleStep.rollback, error=err)
            self.logger.critical(f"[{name}] {err}")
            return ModuleState.rollback_failed, err

        self._transition(name, ModuleState.rolled_back, step=LifecycleStep.rollback)
        self.logger.info(f"[{name}] Rollback successful")
        return ModuleState.rolled_back, None

    def _running_strays(self) -> List[threading.Thread]:
        self._stray_steps = [th for th in self._stray_steps if th.is_alive()]
        return list(self._stray_steps)

    def _handle_interrupt(self, name: str, module: ProvisioningModule, step: LifecycleStep) -> None:
        self.logger.warning(f"[{name}] Interrupted during {step.value}(); marking execution_failed")
        err = RunInterrupted(f"{name}: interrupted during {step.value}()", module=name, step=step.value)
        self._transition(name, ModuleState.execution_failed, step=step, error=err)
        self._attempt_rollback(name, module)

    # ---------- bookkeeping ----------
    def _finish(self, name: str, state: ModuleState, step: Optional[LifecycleStep], err: Optional[RitesError], t0: float) -> ModuleOutcome:
        self._transition(name, state, step=step, error=err)
        if state == ModuleState.completed:
            self.logger.info(f"[{name}] Completed")
        elif state == ModuleState.validation_failed:
            self.logger.warning(f"[{name}] Validation failed: {err}")
        elif state == ModuleState.verification_failed:
            self.logger.error(f"[{name}] Verification failed: {err} (no automatic rollback)")
        else:
            self.logger.error(f"[{name}] Failed during {step.value if step else 'run'}: {err}")
        return self._outcome(name, state, step, err, t0)

    def _outcome(
        self,
        name: str,
        state: ModuleState,
        step: Optional[LifecycleStep],
        err: Optional[RitesError],
        t0: float,
        *,
        rollback_error: Optional[RitesError] = None,
    ) -> ModuleOutcome:
        return ModuleOutcome(
            name=name,
            state=state,
            failed_step=step if err is not None else None,
            error=err.to_dict() if err is not None else None,
            rollback_error=rollback_error.to_dict() if rollback_error is not None else None,
            snapshot=self._snapshot_root(),
            started_at=t0,
            duration_s=round(time.time() - t0, 3),
        )

    def _transition(self, name: str, state: ModuleState, *, step: Optional[LifecycleStep] = None, error: Optional[RitesError] = None) -> None:
        self.store.transition(name, state)
        self._emit(
            "module.transition",
            module=name,
            state=state,
            step=step,
            details={"error": error.to_dict()} if error is not None else None,
        )

    def _emit(
        self,
        event: str,
        *,
        module: Optional[str] = None,
        state: Optional[ModuleState] = None,
        step: Optional[LifecycleStep] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.events is None:
            return
        try:
            self.events.emit(
                event,
                module=module,
                state=state.value if state is not None else None,
                step=step.value if step is not None else None,
                details=details,
            )
        except OSError as e:
            self.logger.warning(f"Event log write failed: {e}")

    def _snapshot_root(self) -> Optional[str]:
        return self.ctx.active_snapshot.root if self.ctx.active_snapshot is not None else None

    def _manual_cleanup_message(self, name: str, detail: str) -> str:
        snap = self._snapshot_root()
        msg = f"Rollback failed for {name}: {detail}. Manual cleanup required."
        if snap:
            return msg + f" Snapshot: {snap}. Restore by hand with: python3 {snap}/restore.py"
        return msg + " No snapshot was taken during this run."
