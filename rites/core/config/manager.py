from __future__ import annotations

import os
from typing import Any, Dict, Optional

from pydantic import ValidationError

from rites.core.config.io import atomic_write_json, read_json_file, recover_from_corrupt, snapshot_last_known_good
from rites.core.config.models import RitesConfig, default_config_dict
from rites.core.config.paths import RitesFsPaths
from rites.core.errors import ConfigError


SHIPPED_MODULES_DIR = os.path.normpath(os.path.join(os.path.dirname(__file__), "..", "..", "modules"))


class ConfigManager:
    """
    Loads config/rites.json (creating defaults when missing), validates it and
    keeps a last-known-good copy for corruption recovery.
    """

    def __init__(self, *, fs: Optional[RitesFsPaths] = None, logger=None, read_only: bool = False, max_backups: int = 10):
        self.fs = fs or RitesFsPaths(".")
        self.logger = logger
        self.read_only = read_only
        self.max_backups = int(max_backups)
        self._cfg: Optional[RitesConfig] = None

    # ---------- public API ----------
    def load_all(self) -> RitesConfig:
        if not self.read_only:
            os.makedirs(self.fs.config_dir, exist_ok=True)
            os.makedirs(self.fs.backups_dir, exist_ok=True)
            os.makedirs(self.fs.last_known_good_dir, exist_ok=True)

        raw = self._load_raw()
        cfg = self._validate(raw)
        self._cfg = cfg

        if not self.read_only:
            snapshot_last_known_good(self.fs.main, self.fs.last_known_good_dir)
        return cfg

    def validate(self) -> None:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        _ = self._validate(self._load_raw())

    def get(self) -> RitesConfig:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def save(self, cfg: RitesConfig) -> None:
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        atomic_write_json(self.fs.main, cfg.model_dump(), self.fs.backups_dir, max_backups=self.max_backups)
        self._cfg = cfg

    def apply_overrides(self, overrides: Dict[str, Any]) -> RitesConfig:
        """
        In-memory overrides (CLI flags); nested dicts are merged, never written back.
        """
        merged = _deep_merge(self.get().model_dump(), overrides or {})
        self._cfg = self._validate(merged)
        return self._cfg

    # ---------- resolved paths ----------
    def home_dir(self) -> str:
        home = self.get().paths.home
        return os.path.abspath(os.path.expanduser(home or "~"))

    def modules_dir(self) -> str:
        d = self.get().paths.modules_dir
        return os.path.abspath(os.path.expanduser(d)) if d else SHIPPED_MODULES_DIR

    def snapshots_dir(self) -> str:
        d = self.get().snapshots.base_dir
        return os.path.abspath(os.path.expanduser(d)) if d else self.home_dir()

    # ---------- internals ----------
    def _load_raw(self) -> Dict[str, Any]:
        rr = read_json_file(self.fs.main)
        if rr.ok:
            return rr.data
        if rr.error == "missing":
            data = default_config_dict()
            if not self.read_only:
                atomic_write_json(self.fs.main, data, self.fs.backups_dir, max_backups=self.max_backups)
                if self.logger:
                    self.logger.info(f"Created default config: {self.fs.main}")
            return data
        if self.read_only:
            raise ConfigError(f"{os.path.basename(self.fs.main)} unreadable: {rr.error}", path=self.fs.main)
        data, recovered = recover_from_corrupt(self.fs.main, self.fs.backups_dir, self.fs.last_known_good_dir, max_backups=self.max_backups)
        if not recovered:
            raise ConfigError(f"{os.path.basename(self.fs.main)} is corrupt and no last-known-good copy exists: {rr.error}", path=self.fs.main)
        if self.logger:
            self.logger.warning(f"Recovered {self.fs.main} from last known good.")
        return data

    def _validate(self, raw: Dict[str, Any]) -> RitesConfig:
        try:
            return RitesConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"{os.path.basename(self.fs.main)} invalid: {e.errors()[:3]}", path=self.fs.main) from e


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


_singleton: Optional[ConfigManager] = None


def get_config(*, root: str = ".", logger=None, read_only: bool = False) -> ConfigManager:
    global _singleton  # noqa: PLW0603
    if _singleton is None:
        _singleton = ConfigManager(fs=RitesFsPaths(root), logger=logger, read_only=read_only)
        _singleton.load_all()
    return _singleton
