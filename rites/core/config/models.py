from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_SNAPSHOT_TARGETS: List[str] = [
    "~/.bashrc",
    "~/.profile",
    "~/.bashrc.d",
    "~/.config/secrets.env",
    "~/.gitignore_global",
    "~/.config/chezmoi/chezmoi.toml",
    "~/.ssh/config",
    "~/.gitconfig",
    "~/.vimrc",
    "~/.tmux.conf",
    "~/.config/starship.toml",
]


class PathsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    home: str = ""  # empty -> the invoking user's home directory
    modules_dir: str = ""  # empty -> shipped rites/modules


class SkipConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    modules: Dict[str, bool] = Field(default_factory=dict)
    patterns: List[str] = Field(default_factory=list)
    read_env: bool = True
    skipped_satisfies_dependencies: bool = True

    @field_validator("patterns", mode="before")
    @classmethod
    def _norm_patterns(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split()
        if isinstance(v, list):
            return [str(x).strip() for x in v if str(x or "").strip()]
        return []


class SnapshotConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    base_dir: str = ""  # empty -> home
    prefix: str = Field(default="dotfiles-backup-", min_length=1)
    retention: int = Field(default=5, ge=1, le=100)
    latest_link: bool = True
    targets: List[str] = Field(default_factory=lambda: list(DEFAULT_SNAPSHOT_TARGETS))


class ExecutorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    step_timeout_seconds: float = Field(default=900.0, ge=0)
    stop_on_failure: bool = True


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    level: str = "INFO"
    max_bytes: int = Field(default=1_000_000, ge=1024)
    backup_count: int = Field(default=5, ge=0, le=100)

    @field_validator("level")
    @classmethod
    def _level_known(cls, v: str) -> str:
        vv = str(v or "").strip().upper()
        if vv not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return vv


class RitesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    skip: SkipConfig = Field(default_factory=SkipConfig)
    snapshots: SnapshotConfig = Field(default_factory=SnapshotConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    module_settings: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


def default_config_dict() -> Dict[str, Any]:
    return RitesConfig().model_dump()
