from __future__ import annotations

import argparse

from rites.core.backup.store import SnapshotStore
from rites.core.config.manager import get_config


def main() -> int:
    ap = argparse.ArgumentParser(description="rites snapshot create")
    ap.add_argument("targets", nargs="*", help="Paths to capture (default: snapshots.targets from config/rites.json)")
    ap.add_argument("--root", default=".", help="State root holding config/")
    args = ap.parse_args()

    cm = get_config(root=args.root, logger=None)
    store = SnapshotStore.from_config(cm)
    handle = store.create_snapshot(args.targets or cm.get().snapshots.targets)
    print(handle.root)
    for p in handle.manifest_paths():
        print(f"  {p}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
