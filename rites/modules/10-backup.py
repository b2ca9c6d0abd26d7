from __future__ import annotations

from rites.core.modules.contract import ProvisioningModule
from rites.core.preflight import CheckStatus, check_dir_writable, check_free_space


MODULE_META = {
    "name": "10-backup",
    "description": "Snapshot existing dotfiles before anything modifies them",
    "version": "1.0.0",
    "dependencies": ["00-prereqs"],
}

MIN_FREE_MB = 100


class Module(ProvisioningModule):
    def _targets(self):
        return list(self.settings.get("targets") or self.ctx.snapshot_targets)

    def validate(self) -> bool:
        writable = check_dir_writable(self.ctx.home, "home.writable")
        if writable.status != CheckStatus.OK:
            self.logger.error(f"[{self.name}] {writable.message}")
            return False
        space = check_free_space(self.ctx.home, min_free_mb=int(self.settings.get("min_free_mb", MIN_FREE_MB)))
        if space.status != CheckStatus.OK:
            self.logger.error(f"[{self.name}] {space.message}")
            return False
        return True

    def execute(self) -> bool:
        targets = self._targets()
        if self.ctx.dry_run:
            for t in targets:
                self.logger.info(f"[{self.name}] would capture {self.ctx.expand(t)}")
            return True
        handle = self.ctx.create_snapshot(targets, module=self.name)
        self.record(f"snapshot {handle.root} ({len(handle.manifest_paths())} paths)")
        self.logger.info(f"[{self.name}] Restore with: python3 {handle.restore_script}")
        return True

    def verify(self) -> bool:
        if self.ctx.dry_run:
            return True
        handle = self.ctx.active_snapshot
        if handle is None:
            self.logger.error(f"[{self.name}] no snapshot was created")
            return False
        return self.ctx.snapshots.verify_snapshot(handle).ok

    def rollback(self) -> bool:
        if self.ctx.dry_run:
            return True
        res = self.ctx.restore_active_snapshot()
        self.record(f"restore: {res.restored_count} restored, {res.failed_count} failed")
        return res.ok
