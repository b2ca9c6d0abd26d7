from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List

from rites.core.backup.collector import mirror_path
from rites.core.backup.models import SnapshotHandle


@dataclass(frozen=True)
class VerifyResult:
    ok: bool
    errors: List[str]
    checked_files: int


def verify_snapshot(handle: SnapshotHandle) -> VerifyResult:
    errors: List[str] = []
    checked = 0
    if not os.path.isdir(handle.root):
        return VerifyResult(ok=False, errors=[f"missing snapshot root: {handle.root}"], checked_files=0)
    if not os.path.isfile(handle.manifest_path):
        return VerifyResult(ok=False, errors=["missing manifest"], checked_files=0)
    if not os.path.isfile(handle.restore_script):
        errors.append("missing restore procedure")

    try:
        paths = handle.manifest_paths()
    except (OSError, UnicodeDecodeError) as e:
        return VerifyResult(ok=False, errors=errors + [f"unreadable manifest: {e}"], checked_files=0)

    for path in paths:
        copy = mirror_path(handle.root, handle.home, path)
        if os.path.lexists(copy):
            checked += 1
        else:
            errors.append(f"missing copy: {path}")

    return VerifyResult(ok=(len(errors) == 0), errors=errors, checked_files=checked)
