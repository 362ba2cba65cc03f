from __future__ import annotations

import os
from dataclasses import dataclass

from wkpm.core.errors import ModuleError


@dataclass(frozen=True)
class WorkspacePaths:
    root: str = "."
    module_dir_name: str = "app-platform"
    bootstrap_dir_name: str = "bootstrap"
    state_dir_name: str = ".webkernel"

    @property
    def root_abs(self) -> str:
        return os.path.abspath(self.root)

    @property
    def module_dir(self) -> str:
        return os.path.join(self.root_abs, self.module_dir_name)

    @property
    def bootstrap_dir(self) -> str:
        return os.path.join(self.root_abs, self.bootstrap_dir_name)

    @property
    def state_dir(self) -> str:
        return os.path.join(self.root_abs, self.state_dir_name)

    # Files
    @property
    def config_file(self) -> str:
        return os.path.join(self.state_dir, "config.json")

    @property
    def key_file(self) -> str:
        return os.path.join(self.state_dir, "config.key")

    @property
    def kernel_app_file(self) -> str:
        return os.path.join(self.bootstrap_dir, "app.php")

    # Directories
    @property
    def lock_dir(self) -> str:
        return os.path.join(self.state_dir, "locks")

    @property
    def backup_dir(self) -> str:
        return os.path.join(self.state_dir, "backups")

    @property
    def log_dir(self) -> str:
        return os.path.join(self.state_dir, "logs")

    @property
    def operations_log(self) -> str:
        return os.path.join(self.log_dir, "operations.jsonl")

    def resolve_inside(self, rel: str) -> str:
        """
        Resolve a repo-relative path declared by a module. Absolute paths and
        paths that climb out of the root are rejected.
        """
        rel = str(rel or "").strip().replace("\\", "/")
        if not rel or os.path.isabs(rel) or rel.startswith("/"):
            raise ModuleError(f"Install path must be relative to the application root: {rel!r}")
        root = self.root_abs
        full = os.path.normpath(os.path.join(root, rel))
        if full == root or not full.startswith(root + os.sep):
            raise ModuleError(f"Install path escapes the application root: {rel!r}")
        return full
