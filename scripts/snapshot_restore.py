from __future__ import annotations

import argparse

from rites.core.backup.store import SnapshotStore
from rites.core.config.manager import get_config


def main() -> int:
    ap = argparse.ArgumentParser(description="rites snapshot restore (dry-run by default)")
    ap.add_argument("path", nargs="?", default=None, help="Snapshot root (default: latest)")
    ap.add_argument("--root", default=".", help="State root holding config/")
    ap.add_argument("--apply", action="store_true", help="Apply restore (overwrites files).")
    args = ap.parse_args()

    cm = get_config(root=args.root, logger=None)
    store = SnapshotStore.from_config(cm)
    handle = store.load(args.path) if args.path else store.latest()
    if handle is None:
        print("No snapshot found.")
        return 1
    if not args.apply:
        print(f"Would restore from {handle.root}:")
        for p in handle.manifest_paths():
            print(f"  {p}")
        return 0
    res = store.restore(handle)
    print({"restored": res.restored_count, "failed": res.failed_count})
    if not res.ok:
        print(f"Manual intervention required: inspect {handle.root}")
        return 3
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
