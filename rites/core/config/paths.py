from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class RitesFsPaths:
    root: str = "."

    @property
    def config_dir(self) -> str:
        return os.path.join(self.root, "config")

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.config_dir, "backups")

    @property
    def last_known_good_dir(self) -> str:
        return os.path.join(self.backups_dir, "last_known_good")

    @property
    def state_dir(self) -> str:
        return os.path.join(self.root, "state")

    @property
    def records_dir(self) -> str:
        return os.path.join(self.state_dir, "records")

    @property
    def logs_dir(self) -> str:
        return os.path.join(self.root, "logs")

    # Files
    @property
    def main(self) -> str:
        return os.path.join(self.config_dir, "rites.json")

    @property
    def last_run(self) -> str:
        return os.path.join(self.state_dir, "last_run.json")

    @property
    def events(self) -> str:
        return os.path.join(self.logs_dir, "events.jsonl")
