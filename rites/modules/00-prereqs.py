from __future__ import annotations

import os
from typing import List, Optional

from rites.core.modules.contract import ProvisioningModule
from rites.core.preflight import CheckStatus, all_passed, check_commands_parallel, check_not_root, to_human


MODULE_META = {
    "name": "00-prereqs",
    "description": "Check prerequisites and create XDG base directories",
    "version": "1.0.0",
    "dependencies": [],
}

DEFAULT_REQUIRED_COMMANDS = ["bash", "git"]
DEFAULT_OPTIONAL_COMMANDS = ["curl", "sudo"]
XDG_DIRS = [".config", ".local/share", ".local/state", ".local/bin", ".cache"]
CREATED = "created directory "
REMOVED = "removed directory "


class Module(ProvisioningModule):
    def __init__(self, ctx):
        super().__init__(ctx)
        self._created: List[str] = []
        self._executed = False

    def _dirs(self) -> List[str]:
        return [self.ctx.expand(d) for d in (self.settings.get("xdg_dirs") or XDG_DIRS)]

    def validate(self) -> bool:
        results = [check_not_root(allow_root=bool(self.settings.get("allow_root", False)))]
        results += check_commands_parallel(
            self.settings.get("required_commands", DEFAULT_REQUIRED_COMMANDS),
            required=True,
            max_workers=int(self.settings.get("max_workers", 4)),
        )
        results += check_commands_parallel(self.settings.get("optional_commands", DEFAULT_OPTIONAL_COMMANDS), required=False)
        for r in results:
            if r.status != CheckStatus.OK:
                self.logger.warning(f"[{self.name}] {r.check_id}: {r.message}")
        if not all_passed(results):
            self.logger.error(f"[{self.name}] Prerequisite checks failed:\n{to_human(r for r in results if r.status == CheckStatus.FAILED)}")
            return False
        return True

    def execute(self) -> bool:
        self._executed = True
        for d in self._dirs():
            if os.path.isdir(d):
                continue
            if self.ctx.dry_run:
                self.logger.info(f"[{self.name}] would create {d}")
                continue
            missing = _missing_chain(d)
            os.makedirs(d, mode=0o755, exist_ok=True)
            for p in missing:
                self._created.append(p)
                self.record(CREATED + p)
        return True

    def verify(self) -> bool:
        if self.ctx.dry_run:
            return True
        missing = [d for d in self._dirs() if not os.path.isdir(d)]
        for d in missing:
            self.logger.error(f"[{self.name}] missing directory {d}")
        return not missing

    def _created_dirs(self) -> Optional[List[str]]:
        """
        Directories created by this module and not yet removed. After execute()
        in this process that is the instance's own list; otherwise it is rebuilt
        from the action record. None when neither is available.
        """
        if self._executed:
            return list(self._created)
        actions = self.ctx.recorded(self.name)
        if actions is None:
            return None
        live: List[str] = []
        for action in actions:
            if action.startswith(CREATED):
                path = action[len(CREATED) :]
                if path not in live:
                    live.append(path)
            elif action.startswith(REMOVED):
                path = action[len(REMOVED) :]
                if path in live:
                    live.remove(path)
        return live

    def rollback(self) -> bool:
        created = self._created_dirs()
        if created is None:
            self.logger.error(f"[{self.name}] no record of the directories this module created; nothing removed")
            return False
        if self.ctx.dry_run:
            for d in created:
                self.logger.info(f"[{self.name}] would remove {d}")
            return True
        # Deepest first, and only while empty.
        for d in sorted(created, key=len, reverse=True):
            try:
                os.rmdir(d)
                self.record(REMOVED + d)
            except FileNotFoundError:
                self.record(REMOVED + d)
            except OSError as e:
                self.logger.warning(f"[{self.name}] left {d} in place: {e}")
        self._created = []
        return True


def _missing_chain(path: str) -> List[str]:
    """`path` and each missing ancestor, shallowest first."""
    out: List[str] = []
    p = os.path.normpath(path)
    while p and not os.path.exists(p):
        out.append(p)
        parent = os.path.dirname(p)
        if parent == p:
            break
        p = parent
    return list(reversed(out))

