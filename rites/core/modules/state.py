from __future__ import annotations

import time
from typing import Dict, List, Optional, Set, Tuple

from rites.core.errors import StateTransitionError
from rites.core.modules.models import ModuleState


_ALLOWED: Dict[ModuleState, Set[ModuleState]] = {
    ModuleState.not_started: {ModuleState.executing},
    ModuleState.executing: {
        ModuleState.validation_failed,
        ModuleState.execution_failed,
        ModuleState.verification_failed,
        ModuleState.completed,
        ModuleState.failed,
    },
    ModuleState.execution_failed: {ModuleState.rolled_back, ModuleState.rollback_failed},
    # explicit rollback
    ModuleState.completed: {ModuleState.rolled_back, ModuleState.rollback_failed},
    ModuleState.verification_failed: {ModuleState.rolled_back, ModuleState.rollback_failed},
}


class ModuleStateStore:
    """
    Process-scoped module state table. Written by the executor only; read by the
    registry (dependency checks) and for reporting. Not persisted.
    """

    def __init__(self) -> None:
        self._states: Dict[str, ModuleState] = {}
        self._skipped: Set[str] = set()
        self._history: Dict[str, List[Tuple[float, ModuleState]]] = {}

    def get(self, name: str) -> ModuleState:
        return self._states.get(str(name), ModuleState.not_started)

    def known(self, name: str) -> bool:
        return str(name) in self._states

    def can_transition(self, name: str, new: ModuleState) -> bool:
        return ModuleState(new) in _ALLOWED.get(self.get(name), set())

    def transition(self, name: str, new: ModuleState) -> ModuleState:
        new = ModuleState(new)
        cur = self.get(name)
        if new not in _ALLOWED.get(cur, set()):
            raise StateTransitionError(f"Illegal transition for {name}: {cur.value} -> {new.value}", module=name, current=cur.value, requested=new.value)
        self._set(name, new)
        return new

    def adopt(self, name: str, state: ModuleState) -> None:
        """
        Seed a module with a state recorded by an earlier process (explicit rollback
        from a fresh process). Only allowed while this process has not touched it.
        """
        if self.known(name):
            raise StateTransitionError(f"State for {name} already tracked in this run.", module=name, current=self.get(name).value)
        self._set(name, ModuleState(state))

    def reset(self, name: str) -> None:
        self._states.pop(str(name), None)
        self._skipped.discard(str(name))

    def mark_skipped(self, name: str) -> None:
        self._skipped.add(str(name))

    def is_skipped(self, name: str) -> bool:
        return str(name) in self._skipped

    def skipped(self) -> List[str]:
        return sorted(self._skipped)

    def history(self, name: str) -> List[Tuple[float, ModuleState]]:
        return list(self._history.get(str(name), []))

    def snapshot(self) -> Dict[str, str]:
        return {k: v.value for k, v in sorted(self._states.items())}

    def _set(self, name: str, state: ModuleState) -> None:
        self._states[str(name)] = state
        self._history.setdefault(str(name), []).append((time.time(), state))


def state_from_value(value: Optional[str]) -> Optional[ModuleState]:
    try:
        return ModuleState(str(value)) if value else None
    except ValueError:
        return None
