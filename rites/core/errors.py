from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from rites.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class RitesError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return self.user_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- Configuration class (fatal to the whole run) ----
class ConfigError(RitesError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class ModuleLoadError(RitesError):
    def __init__(self, user_message: str = "Module could not be loaded.", **ctx: Any):
        super().__init__("module_load_error", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class UnknownModuleError(RitesError):
    def __init__(self, user_message: str = "Unknown module.", **ctx: Any):
        super().__init__("unknown_module", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


# ---- Lifecycle step classes ----
class PreconditionError(RitesError):
    def __init__(self, user_message: str = "Module preconditions not met.", **ctx: Any):
        super().__init__("precondition_failed", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class ExecutionError(RitesError):
    def __init__(self, user_message: str = "Module execution failed.", **ctx: Any):
        super().__init__("execution_failed", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class VerificationError(RitesError):
    def __init__(self, user_message: str = "Module verification failed.", **ctx: Any):
        super().__init__("verification_failed", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class RollbackError(RitesError):
    def __init__(self, user_message: str = "Rollback failed: manual cleanup required.", **ctx: Any):
        super().__init__("rollback_failed", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class RollbackUnavailableError(RitesError):
    def __init__(self, user_message: str = "Module has no rollback.", **ctx: Any):
        super().__init__("rollback_unavailable", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class StepTimeoutError(RitesError):
    def __init__(self, user_message: str = "Lifecycle step timed out.", **ctx: Any):
        super().__init__("step_timeout", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class StateTransitionError(RitesError):
    def __init__(self, user_message: str = "Illegal module state transition.", **ctx: Any):
        super().__init__("state_transition_error", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


# ---- Snapshot store ----
class SnapshotError(RitesError):
    def __init__(self, user_message: str = "Snapshot error.", **ctx: Any):
        super().__init__("snapshot_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class RunInterrupted(RitesError):
    def __init__(self, user_message: str = "Provisioning run interrupted.", **ctx: Any):
        super().__init__("interrupted", user_message, severity=Severity.WARN, recoverable=False, context=ctx)
