from __future__ import annotations

import os
import shutil
from typing import Iterable, List

from rites.core.backup.models import ABS_MIRROR_DIR, HOME_MIRROR_DIR


def expand_target(target: str, home: str) -> str:
    """
    Resolve a configured target against `home` ("~" means the provisioned home,
    which is not necessarily the invoking user's).
    """
    t = str(target or "").strip()
    if t == "~":
        t = home
    elif t.startswith("~/"):
        t = os.path.join(home, t[2:])
    elif not os.path.isabs(t):
        t = os.path.join(home, t)
    return os.path.normpath(t)


def expand_targets(targets: Iterable[str], home: str) -> List[str]:
    out: List[str] = []
    seen = set()
    for t in targets:
        if not str(t or "").strip():
            continue
        p = expand_target(t, home)
        if p in seen:
            continue
        seen.add(p)
        out.append(p)
    return out


def mirror_path(snapshot_root: str, home: str, source: str) -> str:
    home = os.path.normpath(home)
    if source.startswith(home + os.sep):
        return os.path.join(snapshot_root, HOME_MIRROR_DIR, source[len(home) + 1 :])
    return os.path.join(snapshot_root, ABS_MIRROR_DIR, source.lstrip(os.sep))


def capture(source: str, dest: str) -> None:
    """
    Copy one target preserving mode, timestamps and symlink-ness.
    Raises OSError/shutil.Error on failure.
    """
    os.makedirs(os.path.dirname(dest), exist_ok=True)
    if os.path.islink(source):
        if os.path.lexists(dest):
            os.unlink(dest)
        os.symlink(os.readlink(source), dest)
    elif os.path.isdir(source):
        shutil.copytree(source, dest, symlinks=True, dirs_exist_ok=True)
    else:
        shutil.copy2(source, dest, follow_symlinks=False)


def discard_partial(dest: str) -> None:
    try:
        if os.path.islink(dest) or os.path.isfile(dest):
            os.unlink(dest)
        elif os.path.isdir(dest):
            shutil.rmtree(dest)
    except OSError:
        pass
