from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ConfigFsPaths:
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
    def runtime_dir(self) -> str:
        return os.path.join(self.root, "runtime")

    @property
    def logs_dir(self) -> str:
        return os.path.join(self.root, "logs")

    # Files
    @property
    def app(self) -> str:
        return os.path.join(self.config_dir, "app.json")

    @property
    def pipeline(self) -> str:
        return os.path.join(self.config_dir, "pipeline.json")

    @property
    def web(self) -> str:
        return os.path.join(self.config_dir, "web.json")

    @property
    def retention(self) -> str:
        return os.path.join(self.config_dir, "retention.json")

    @property
    def storage(self) -> str:
        return os.path.join(self.config_dir, "storage.json")

    def resolve(self, path: str) -> str:
        """Resolve a config-relative path (e.g. storage.db_path) against root."""
        if os.path.isabs(path):
            return path
        return os.path.join(self.root, path)
