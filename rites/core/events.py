from __future__ import annotations

"""
Run journal: logs/events.jsonl, one JSON line per lifecycle event.

The journal is shared by every run against the same state root; each line is
stamped with the trace id of the run that wrote it, so a single run (or a
single module's history across runs) can be read back out of it.
"""

import json
import os
import threading
import time
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


# Names only; a bare "key" is too common in module details to hide.
SECRET_KEYS = frozenset(
    {
        "passphrase",
        "password",
        "secret",
        "token",
        "api_key",
        "private_key",
        "gpg_key",
        "ssh_key",
        "authorization",
    }
)

REDACTED = "***REDACTED***"


def redact(obj: Any) -> Any:
    """Copy of `obj` with values under secret-looking keys masked, at any depth."""
    if isinstance(obj, dict):
        return {k: (REDACTED if str(k).lower() in SECRET_KEYS else redact(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    return obj


def new_trace_id() -> str:
    return uuid.uuid4().hex


class LifecycleEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts: str
    trace_id: str
    event: str
    module: Optional[str] = None
    state: Optional[str] = None
    step: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class RunJournal:
    """
    Append-only event journal for one orchestration run.

    Events: run.start, run.finish, module.skipped, module.blocked and
    module.transition (one per state change, with the step that caused it).
    """

    def __init__(self, path: str, *, trace_id: Optional[str] = None):
        self.path = path
        self.trace_id = str(trace_id) if trace_id else new_trace_id()
        self._lock = threading.Lock()

    def emit(
        self,
        event: str,
        *,
        module: Optional[str] = None,
        state: Optional[str] = None,
        step: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> LifecycleEvent:
        ev = LifecycleEvent(
            ts=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            trace_id=self.trace_id,
            event=event,
            module=module,
            state=state,
            step=step,
            details=redact(details or {}),
        )
        line = ev.model_dump_json(exclude_none=True)
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        return ev

    def read(self, *, trace_id: Optional[str] = None, module: Optional[str] = None) -> List[LifecycleEvent]:
        """
        Events in write order. Filters by run and/or module; unparseable lines
        (a torn final write) are skipped.
        """
        if not os.path.exists(self.path):
            return []
        out: List[LifecycleEvent] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    ev = LifecycleEvent.model_validate(json.loads(line))
                except (json.JSONDecodeError, ValidationError):
                    continue
                if trace_id is not None and ev.trace_id != trace_id:
                    continue
                if module is not None and ev.module != module:
                    continue
                out.append(ev)
        return out

