from __future__ import annotations

import argparse
import json

from rites.core.config.manager import ConfigManager
from rites.core.config.paths import RitesFsPaths


def main() -> None:
    ap = argparse.ArgumentParser(description="Print the validated rites configuration.")
    ap.add_argument("--root", default=".", help="State root holding config/ (default: .)")
    args = ap.parse_args()

    cm = ConfigManager(fs=RitesFsPaths(args.root), logger=None, read_only=True)
    cfg = cm.load_all()
    out = cfg.model_dump()
    out["resolved"] = {"home": cm.home_dir(), "modules_dir": cm.modules_dir(), "snapshots_dir": cm.snapshots_dir()}
    print(json.dumps(out, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
