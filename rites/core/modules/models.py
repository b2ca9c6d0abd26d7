from __future__ import annotations

"""
Provisioning module models (declared metadata, state values, lifecycle outcomes).

Metadata is read from module source without importing it; these models are the
validated form of that literal dict and of what a run reports per module.
"""

import re
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


MODULE_NAME_RE = re.compile(r"^(\d{2})-([A-Za-z0-9][A-Za-z0-9_-]*)$")


class ModuleState(str, Enum):
    not_started = "not_started"
    executing = "executing"
    completed = "completed"
    validation_failed = "validation_failed"
    execution_failed = "execution_failed"
    verification_failed = "verification_failed"
    failed = "failed"
    rolled_back = "rolled_back"
    rollback_failed = "rollback_failed"


TERMINAL_STATES = frozenset(
    {
        ModuleState.completed,
        ModuleState.validation_failed,
        ModuleState.verification_failed,
        ModuleState.failed,
        ModuleState.rolled_back,
        ModuleState.rollback_failed,
    }
)

# States an operator may explicitly roll back from.
ROLLBACK_SOURCE_STATES = frozenset({ModuleState.completed, ModuleState.verification_failed, ModuleState.execution_failed})


class LifecycleStep(str, Enum):
    load = "load"
    validate = "validate"
    execute = "execute"
    verify = "verify"
    rollback = "rollback"


def module_priority(name: str) -> Optional[int]:
    m = MODULE_NAME_RE.match(str(name or ""))
    return int(m.group(1)) if m else None


class ModuleMeta(BaseModel):
    """MODULE_META as declared by a module file."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1)
    description: str = ""
    version: str = "0.0.0"
    dependencies: List[str] = Field(default_factory=list)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _norm_deps(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = v.replace(",", " ").split()
        if isinstance(v, (list, tuple)):
            return [str(x).strip() for x in v if str(x or "").strip()]
        return []


class ModuleMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    path: str = ""
    status: str = "ok"  # ok|missing|invalid
    description: str = ""
    version: str = ""
    dependencies: List[str] = Field(default_factory=list)
    priority: Optional[int] = None
    state: Optional[ModuleState] = None
    error: str = ""


class ModuleOutcome(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    state: ModuleState
    skipped: bool = False
    skip_reason: str = ""
    blocked: bool = False
    failed_step: Optional[LifecycleStep] = None
    error: Optional[Dict[str, Any]] = None
    rollback_error: Optional[Dict[str, Any]] = None
    snapshot: Optional[str] = None
    started_at: float = Field(default_factory=lambda: time.time())
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.skipped or self.state == ModuleState.completed

    @property
    def manual_intervention_required(self) -> bool:
        return self.state == ModuleState.rollback_failed


class RunSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    trace_id: str
    outcomes: List[ModuleOutcome] = Field(default_factory=list)
    aborted_at: Optional[str] = None

    @property
    def blocked(self) -> List[str]:
        return [o.name for o in self.outcomes if o.blocked]

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def exit_code(self) -> int:
        if any(o.manual_intervention_required for o in self.outcomes):
            return 3
        return 0 if self.ok else 1
