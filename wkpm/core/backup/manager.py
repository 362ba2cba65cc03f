from __future__ import annotations

import json
import logging
import os
import shutil
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from wkpm.core.errors import ModuleError


META_SUFFIX = ".backup-meta.json"


def directory_size(path: str) -> int:
    total = 0
    for root, _dirs, files in os.walk(path):
        for fn in files:
            fp = os.path.join(root, fn)
            if os.path.islink(fp):
                continue
            try:
                total += os.path.getsize(fp)
            except OSError:
                continue
    return total


def _iso_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _ignore_for(excluded_dirs: Iterable[str]) -> Callable[[str, List[str]], List[str]]:
    skip_dirs = {os.path.abspath(d) for d in excluded_dirs if d}

    def _ignore(directory: str, names: List[str]) -> List[str]:
        out: List[str] = []
        base = os.path.abspath(directory)
        for name in names:
            if os.path.join(base, name) in skip_dirs:
                out.append(name)
        return out

    return _ignore


class BackupManager:
    """
    Directory snapshots for destructive operations.

    Layout:
    - <backup_root>/<label>_<YYYY-mm-dd_HH-MM-SS>/       (copy of the source tree)
    - <backup_root>/<label>_<YYYY-mm-dd_HH-MM-SS>.backup-meta.json
    """

    def __init__(self, backup_root: str, *, keep_count: int = 5, excluded_dirs: Iterable[str] = (), logger: Any = None):
        self.backup_root = str(backup_root)
        self.keep_count = int(keep_count)
        self.excluded_dirs = [str(d) for d in excluded_dirs]
        self.logger = logger or logging.getLogger("wkpm")

    # ---- public API ----
    def create_backup(self, target_dir: str, label: str) -> str:
        if not os.path.isdir(target_dir):
            raise ModuleError(f"Target directory does not exist: {target_dir}")
        label = str(label or "").strip()
        if not label or "/" in label or "\\" in label:
            raise ModuleError(f"Invalid backup label: {label!r}")

        os.makedirs(self.backup_root, exist_ok=True)
        backup_dir = self._unique_dir(label)
        shutil.copytree(
            target_dir,
            backup_dir,
            symlinks=True,
            ignore=_ignore_for([self.backup_root, *self.excluded_dirs]),
        )

        meta = {
            "label": label,
            "source": os.path.abspath(target_dir),
            "created_at": _iso_now(),
            "size_bytes": directory_size(backup_dir),
        }
        with open(backup_dir + META_SUFFIX, "w", encoding="utf-8") as f:
            json.dump(meta, f, indent=2, ensure_ascii=False)
            f.write("\n")
        self.logger.info(f"Backup created: {backup_dir} ({meta['size_bytes']} bytes)")
        return backup_dir

    def list_backups(self, label: str = "") -> List[str]:
        """
        Backup directories, newest (by modification time) first.
        """
        if not os.path.isdir(self.backup_root):
            return []
        out: List[str] = []
        for name in os.listdir(self.backup_root):
            path = os.path.join(self.backup_root, name)
            if not os.path.isdir(path):
                continue
            if label and not self._matches_label(path, name, label):
                continue
            out.append(path)
        out.sort(key=lambda p: os.path.getmtime(p), reverse=True)
        return out

    def read_metadata(self, backup_dir: str) -> Optional[Dict[str, Any]]:
        try:
            with open(str(backup_dir).rstrip("/\\") + META_SUFFIX, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError):
            return None
        return raw if isinstance(raw, dict) else None

    def restore_backup(self, backup_dir: str, target_dir: str) -> None:
        if not os.path.isdir(backup_dir):
            raise ModuleError(f"Backup directory does not exist: {backup_dir}")

        parent = os.path.dirname(os.path.abspath(target_dir))
        os.makedirs(parent, exist_ok=True)
        staging = os.path.join(parent, f".restoring-{uuid.uuid4().hex[:12]}")
        try:
            shutil.copytree(backup_dir, staging, symlinks=True)
            if os.path.isdir(target_dir):
                shutil.rmtree(target_dir)
            os.replace(staging, target_dir)
        finally:
            if os.path.isdir(staging):
                shutil.rmtree(staging, ignore_errors=True)
        self.logger.info(f"Backup restored: {backup_dir} -> {target_dir}")

    def clean_old_backups(self, label: str = "", keep_count: Optional[int] = None) -> List[str]:
        keep = self.keep_count if keep_count is None else int(keep_count)
        backups = self.list_backups(label)
        if len(backups) <= keep:
            return []
        removed: List[str] = []
        for path in backups[max(keep, 0):]:
            shutil.rmtree(path)
            try:
                os.remove(path + META_SUFFIX)
            except FileNotFoundError:
                pass
            removed.append(path)
        if removed:
            self.logger.info(f"Pruned {len(removed)} old backup(s) for '{label or '*'}'")
        return removed

    # ---- internal ----
    def _unique_dir(self, label: str) -> str:
        ts = time.strftime("%Y-%m-%d_%H-%M-%S", time.localtime())
        base = os.path.join(self.backup_root, f"{label}_{ts}")
        path = base
        n = 1
        while os.path.exists(path) or os.path.exists(path + META_SUFFIX):
            n += 1
            path = f"{base}_{n}"
        return path

    def _matches_label(self, path: str, name: str, label: str) -> bool:
        meta = self.read_metadata(path)
        if meta is not None and meta.get("label"):
            return str(meta.get("label")) == label
        return name.startswith(f"{label}_")
