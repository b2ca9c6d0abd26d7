"""
Provisioning module contract, registry and lifecycle executor.

Modules are discovered by filename and described by a literal MODULE_META read
without importing them; they are imported only when a lifecycle step needs them.
"""

from rites.core.modules.contract import ModuleContext, ProvisioningModule
from rites.core.modules.discovery import ModuleRegistry
from rites.core.modules.executor import LifecycleExecutor
from rites.core.modules.models import ModuleOutcome, ModuleState
from rites.core.modules.skip import SkipPolicy
from rites.core.modules.state import ModuleStateStore

__all__ = [
    "LifecycleExecutor",
    "ModuleContext",
    "ModuleOutcome",
    "ModuleRegistry",
    "ModuleState",
    "ModuleStateStore",
    "ProvisioningModule",
    "SkipPolicy",
]
