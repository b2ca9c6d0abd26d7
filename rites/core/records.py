from __future__ import annotations

import os
import re
import threading
import time
from dataclasses import dataclass
from typing import List


_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class ActionRecorder:
    """
    Human-readable audit trail of what each module did (one file per module).
    Never consulted by the orchestrator itself.
    """

    records_dir: str = os.path.join("state", "records")
    _lock: threading.Lock = threading.Lock()

    def path_for(self, module_name: str) -> str:
        safe = _SAFE_NAME.sub("_", str(module_name or "unknown")).strip("._") or "unknown"
        return os.path.join(self.records_dir, f"{safe}.log")

    def record(self, module_name: str, action: str) -> None:
        path = self.path_for(module_name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        line = f"{time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime())} {str(action).strip()}"
        with self._lock:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                try:
                    f.flush()
                    os.fsync(f.fileno())
                except OSError:
                    pass

    def read(self, module_name: str) -> List[str]:
        path = self.path_for(module_name)
        if not os.path.exists(path):
            return []
        with open(path, "r", encoding="utf-8") as f:
            return [line.rstrip("\n") for line in f if line.strip()]

    def actions(self, module_name: str) -> List[str]:
        """Recorded action texts without their timestamps."""
        return [line.split(" ", 1)[1] if " " in line else "" for line in self.read(module_name)]
