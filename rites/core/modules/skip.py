from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from rites.core.config.models import SkipConfig


_TRUTHY = {"1", "true", "yes", "on", "y"}


def env_flag_name(module_name: str) -> str:
    """SKIP_<NAME>: upper-cased module name with '-' replaced by '_' (SKIP_60_DEVTOOLS)."""
    return "SKIP_" + str(module_name).upper().replace("-", "_")


def _split_patterns(raw: str) -> List[str]:
    return [p for p in str(raw or "").replace(",", " ").split() if p]


@dataclass(frozen=True)
class SkipDecision:
    skipped: bool
    reason: str = ""
    source: str = ""  # config|env|pattern


class SkipPolicy:
    """
    A module is skipped if its override flag is set or its name contains any
    exclusion substring. Config and environment are merged; the environment can
    add skips but never remove one set by config.
    """

    def __init__(self, *, modules: Optional[Dict[str, bool]] = None, patterns: Optional[Iterable[str]] = None, env: Optional[Mapping[str, str]] = None):
        self.modules = {str(k): bool(v) for k, v in (modules or {}).items()}
        self.patterns = [str(p) for p in (patterns or []) if str(p or "").strip()]
        self.env = env

    @classmethod
    def from_config(cls, cfg: SkipConfig, *, extra_patterns: Iterable[str] = (), env: Optional[Mapping[str, str]] = None) -> "SkipPolicy":
        if env is None and cfg.read_env:
            env = os.environ
        return cls(modules=cfg.modules, patterns=list(cfg.patterns) + list(extra_patterns), env=env if cfg.read_env else None)

    def env_patterns(self) -> List[str]:
        if self.env is None:
            return []
        return _split_patterns(self.env.get("SKIP_MODULES", ""))

    def decide(self, name: str) -> SkipDecision:
        if self.modules.get(name):
            return SkipDecision(True, f"skip.modules[{name}] is set", "config")
        if self.env is not None:
            flag = env_flag_name(name)
            if str(self.env.get(flag, "")).strip().lower() in _TRUTHY:
                return SkipDecision(True, f"{flag} is set", "env")
        for pat in self.patterns:
            if pat in name:
                return SkipDecision(True, f"name matches exclusion pattern {pat!r}", "pattern")
        for pat in self.env_patterns():
            if pat in name:
                return SkipDecision(True, f"name matches SKIP_MODULES pattern {pat!r}", "env")
        return SkipDecision(False)

    def should_skip(self, name: str) -> bool:
        return self.decide(name).skipped
