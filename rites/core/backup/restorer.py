from __future__ import annotations

import json
import os
import subprocess
import sys
from typing import List, Optional, Tuple

from rites.core.backup.models import ABS_MIRROR_DIR, HOME_MIRROR_DIR, MANIFEST_NAME, RestoreResult, SnapshotHandle
from rites.core.config.io import atomic_write_text


# Bundled into every snapshot root. Must stay stdlib-only: it is meant to be run
# by hand (python3 restore.py) on a machine where rites itself may be broken.
RESTORE_SCRIPT_TEMPLATE = '''#!/usr/bin/env python3
"""
Restore procedure for this snapshot (generated by rites).

Copies every path listed in the manifest back to its original location.
Safe to run more than once. Exit status is non-zero if anything failed.
"""
import json
import os
import shutil
import stat
import sys

SNAPSHOT_DIR = os.path.dirname(os.path.abspath(__file__))
MANIFEST = os.path.join(SNAPSHOT_DIR, "@MANIFEST@")
HOME = @HOME@
HOME_MIRROR_DIR = "@HOME_MIRROR_DIR@"
ABS_MIRROR_DIR = "@ABS_MIRROR_DIR@"


def mirror_of(path):
    home = os.path.normpath(HOME)
    if path.startswith(home + os.sep):
        return os.path.join(SNAPSHOT_DIR, HOME_MIRROR_DIR, path[len(home) + 1:])
    return os.path.join(SNAPSHOT_DIR, ABS_MIRROR_DIR, path.lstrip(os.sep))


def _remove(path):
    if os.path.islink(path) or not os.path.isdir(path):
        os.unlink(path)
    else:
        shutil.rmtree(path)


def _copy_entry(src, dst):
    if os.path.islink(src):
        if os.path.lexists(dst):
            _remove(dst)
        os.symlink(os.readlink(src), dst)
    elif os.path.isdir(src):
        if os.path.lexists(dst) and (os.path.islink(dst) or not os.path.isdir(dst)):
            _remove(dst)
        os.makedirs(dst, exist_ok=True)
        os.chmod(dst, stat.S_IMODE(os.lstat(dst).st_mode) | stat.S_IRWXU)
        for name in sorted(os.listdir(src)):
            _copy_entry(os.path.join(src, name), os.path.join(dst, name))
        shutil.copystat(src, dst, follow_symlinks=False)
    else:
        if os.path.lexists(dst):
            _remove(dst)
        shutil.copy2(src, dst, follow_symlinks=False)


def read_manifest():
    with open(MANIFEST, "r", encoding="utf-8") as f:
        return [line.rstrip("\\n") for line in f if line.strip() and not line.startswith("#")]


def main():
    print("[restore] Restoring from " + SNAPSHOT_DIR)
    if not os.path.isfile(MANIFEST):
        print("[restore] No manifest found: " + MANIFEST, file=sys.stderr)
        print(json.dumps({"restored": 0, "failed": 0, "error": "missing_manifest"}))
        return 2

    restored = 0
    failed = 0
    for path in read_manifest():
        src = mirror_of(path)
        if not os.path.lexists(src):
            print("  snapshot copy not found: " + src, file=sys.stderr)
            failed += 1
            continue
        try:
            parent = os.path.dirname(path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            _copy_entry(src, path)
        except (OSError, shutil.Error) as e:
            print("  failed to restore: %s (%s)" % (path, e), file=sys.stderr)
            failed += 1
            continue
        print("  restored: " + path)
        restored += 1

    if failed:
        print("[restore] Some paths failed to restore. Manual intervention may be required.", file=sys.stderr)
    print(json.dumps({"restored": restored, "failed": failed}))
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
'''


def render_restore_script(home: str) -> str:
    return (
        RESTORE_SCRIPT_TEMPLATE.replace("@MANIFEST@", MANIFEST_NAME)
        .replace("@HOME_MIRROR_DIR@", HOME_MIRROR_DIR)
        .replace("@ABS_MIRROR_DIR@", ABS_MIRROR_DIR)
        .replace("@HOME@", repr(os.path.normpath(home)))
    )


def write_restore_script(handle: SnapshotHandle) -> str:
    atomic_write_text(handle.restore_script, render_restore_script(handle.home), mode=0o755)
    return handle.restore_script


def parse_summary(stdout: str) -> Optional[Tuple[int, int]]:
    for line in reversed((stdout or "").splitlines()):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict) and "restored" in obj and "failed" in obj:
            return int(obj["restored"]), int(obj["failed"])
    return None


def run_restore_script(handle: SnapshotHandle, *, python: Optional[str] = None, timeout: Optional[float] = None) -> RestoreResult:
    proc = subprocess.run(
        [python or sys.executable, handle.restore_script],
        cwd=handle.root,
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )
    output: List[str] = (proc.stdout or "").splitlines() + (proc.stderr or "").splitlines()
    summary = parse_summary(proc.stdout)
    if summary is None:
        # No summary means the procedure died early; never report that as success.
        return RestoreResult(restored_count=0, failed_count=max(1, len(handle.manifest_paths())), exit_code=proc.returncode or 1, output=output)
    restored, failed = summary
    return RestoreResult(restored_count=restored, failed_count=failed, exit_code=int(proc.returncode), output=output)
