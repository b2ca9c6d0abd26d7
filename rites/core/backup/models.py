from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


MANIFEST_NAME = ".manifest"
RESTORE_SCRIPT_NAME = "restore.py"
INFO_NAME = ".snapshot_info.json"
# Captured copies live in their own subtrees so no target can collide with the
# bookkeeping files above or with each other.
HOME_MIRROR_DIR = "home"  # targets under the home directory, by relative path
ABS_MIRROR_DIR = "abs"  # everything else, by absolute path


class SnapshotInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snapshot_id: str
    created_at: float = Field(default_factory=lambda: time.time())
    home: str
    module: Optional[str] = None
    created_by_user: str = ""
    created_on_host: str = ""
    requested_targets: int = 0
    captured_targets: int = 0
    warnings: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class SnapshotHandle:
    snapshot_id: str
    root: str
    home: str

    @property
    def manifest_path(self) -> str:
        return os.path.join(self.root, MANIFEST_NAME)

    @property
    def restore_script(self) -> str:
        return os.path.join(self.root, RESTORE_SCRIPT_NAME)

    @property
    def info_path(self) -> str:
        return os.path.join(self.root, INFO_NAME)

    def manifest_paths(self) -> List[str]:
        return read_manifest(self.manifest_path)


@dataclass(frozen=True)
class RestoreResult:
    restored_count: int
    failed_count: int
    exit_code: int
    output: List[str]

    @property
    def ok(self) -> bool:
        return self.failed_count == 0 and self.exit_code == 0


def read_manifest(path: str) -> List[str]:
    out: List[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.rstrip("\n")
            if not line.strip() or line.startswith("#"):
                continue
            out.append(line)
    return out
