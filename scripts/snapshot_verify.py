from __future__ import annotations

import argparse

from rites.core.backup.store import SnapshotStore
from rites.core.config.manager import get_config


def main() -> int:
    ap = argparse.ArgumentParser(description="rites snapshot verify")
    ap.add_argument("path", nargs="?", default=None, help="Snapshot root (default: latest)")
    ap.add_argument("--root", default=".", help="State root holding config/")
    args = ap.parse_args()

    cm = get_config(root=args.root, logger=None)
    store = SnapshotStore.from_config(cm)
    handle = store.load(args.path) if args.path else store.latest()
    if handle is None:
        print("No snapshot found.")
        return 1
    res = store.verify_snapshot(handle)
    print({"root": handle.root, "ok": res.ok, "errors": res.errors, "checked_files": res.checked_files})
    return 0 if res.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
