from __future__ import annotations

"""
Provisioning module contract.

Every module file (<modules_dir>/NN-slug.py) declares a literal MODULE_META dict
and a `Module` class deriving from ProvisioningModule. validate() and execute()
are required; verify() passes by default; rollback() is unavailable by default.
A step fails when it returns a falsy value or raises.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from rites.core.backup.collector import expand_target
from rites.core.backup.models import RestoreResult, SnapshotHandle
from rites.core.backup.store import SnapshotStore
from rites.core.config.io import atomic_write_text
from rites.core.errors import RollbackUnavailableError, SnapshotError
from rites.core.records import ActionRecorder


class ModuleContext:
    """
    Shared by every module of one run. Holds the active snapshot handle so the
    executor (and a later rollback) can find what a module captured.
    """

    def __init__(
        self,
        *,
        home: str,
        snapshots: SnapshotStore,
        snapshot_targets: Optional[Iterable[str]] = None,
        module_settings: Optional[Dict[str, Dict[str, Any]]] = None,
        recorder: Optional[ActionRecorder] = None,
        logger: Optional[logging.Logger] = None,
        dry_run: bool = False,
    ):
        self.home = os.path.abspath(home)
        self.snapshots = snapshots
        self.snapshot_targets: List[str] = list(snapshot_targets or [])
        self.module_settings = dict(module_settings or {})
        self.recorder = recorder
        self.logger = logger or logging.getLogger("rites")
        self.dry_run = bool(dry_run)
        self.active_snapshot: Optional[SnapshotHandle] = None

    def settings(self, name: str) -> Dict[str, Any]:
        return dict(self.module_settings.get(str(name)) or {})

    def expand(self, path: str) -> str:
        return expand_target(path, self.home)

    def create_snapshot(self, targets: Optional[Iterable[str]] = None, *, module: Optional[str] = None) -> SnapshotHandle:
        handle = self.snapshots.create_snapshot(list(targets) if targets is not None else self.snapshot_targets, module=module)
        self.active_snapshot = handle
        return handle

    def resolve_snapshot(self) -> Optional[SnapshotHandle]:
        """
        Operator-requested rollback only: adopt the latest snapshot on disk when
        this process has none. Automatic rollback never calls this.
        """
        if self.active_snapshot is None:
            self.active_snapshot = self.snapshots.latest()
        return self.active_snapshot

    def restore_active_snapshot(self) -> RestoreResult:
        """
        Restore the snapshot taken in this run (or adopted for an explicit
        rollback). An older snapshot is never restored in its place.
        """
        handle = self.active_snapshot
        if handle is None:
            raise SnapshotError("No snapshot was taken in this run; refusing to restore an older one.", base_dir=self.snapshots.base_dir)
        return self.snapshots.restore(handle)

    def record(self, name: str, text: str) -> None:
        if self.recorder is not None:
            self.recorder.record(name, text)

    def recorded(self, name: str) -> Optional[List[str]]:
        """Actions recorded for `name` across runs, oldest first; None without a recorder."""
        if self.recorder is None:
            return None
        return self.recorder.actions(name)

    def atomic_write_text(self, path: str, text: str, *, mode: Optional[int] = 0o644) -> None:
        atomic_write_text(self.expand(path), text, mode=mode)


class ProvisioningModule(ABC):
    MODULE_META: Dict[str, Any] = {}

    def __init__(self, ctx: ModuleContext):
        self.ctx = ctx

    @property
    def name(self) -> str:
        return str((self.MODULE_META or {}).get("name") or type(self).__name__)

    @property
    def settings(self) -> Dict[str, Any]:
        return self.ctx.settings(self.name)

    @property
    def logger(self) -> logging.Logger:
        return self.ctx.logger

    def record(self, text: str) -> None:
        self.ctx.record(self.name, text)

    @abstractmethod
    def validate(self) -> bool:
        """Precondition check. Must not mutate anything."""

    @abstractmethod
    def execute(self) -> bool:
        """Apply the module's changes. Snapshot first if they should be undoable."""

    def verify(self) -> bool:
        return True

    def rollback(self) -> bool:
        raise RollbackUnavailableError(f"{self.name} does not implement rollback.", module=self.name)

    @property
    def supports_verify(self) -> bool:
        return type(self).verify is not ProvisioningModule.verify

    @property
    def supports_rollback(self) -> bool:
        return type(self).rollback is not ProvisioningModule.rollback
