from __future__ import annotations

"""
Named cross-process locks backed by OS advisory locks on files.

WHY THIS FILE EXISTS:
Install and kernel-update runs replace directories on disk. Two invocations
(two terminals, a cron job and an operator) must never swap the same target at
the same time. The lock file contents are for diagnostics only; exclusion comes
from flock/msvcrt on the open handle.
"""

import hashlib
import json
import logging
import os
import socket
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional

import psutil

from wkpm.core.errors import LockError


@dataclass(frozen=True)
class LockInfo:
    operation: str
    pid: int
    timestamp: float
    hostname: str


def lock_name(operation: str) -> str:
    return hashlib.sha256(str(operation).encode("utf-8")).hexdigest()[:32] + ".lock"


def _try_lock(handle) -> bool:  # noqa: ANN001
    if os.name == "nt":
        import msvcrt

        try:
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)  # type: ignore[attr-defined]
        except OSError:
            return False
        return True
    import fcntl

    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


def _unlock(handle) -> None:  # noqa: ANN001
    if os.name == "nt":
        import msvcrt

        try:
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
        except OSError:
            return
        return
    import fcntl

    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    except OSError:
        return


def _same_file(handle, path: str) -> bool:  # noqa: ANN001
    try:
        a = os.fstat(handle.fileno())
        b = os.stat(path)
    except OSError:
        return False
    return (a.st_dev, a.st_ino) == (b.st_dev, b.st_ino)


def _read_info(path: str) -> Optional[LockInfo]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.loads(f.read() or "{}")
    except (OSError, ValueError):
        return None
    if not isinstance(raw, dict):
        return None
    try:
        return LockInfo(
            operation=str(raw.get("operation") or ""),
            pid=int(raw.get("pid") or 0),
            timestamp=float(raw.get("timestamp") or 0),
            hostname=str(raw.get("hostname") or ""),
        )
    except (TypeError, ValueError):
        return None


class LockManager:
    """
    One LockManager holds at most one lock at a time.

    acquire() polls a non-blocking exclusive lock until `timeout` elapses.
    release() is idempotent and also runs when the object is collected.
    """

    def __init__(
        self,
        lock_dir: str,
        *,
        timeout: float = 300,
        poll_interval: float = 0.1,
        stale_after: float = 3600,
        logger: Any = None,
    ):
        self.lock_dir = str(lock_dir)
        self.timeout = float(timeout)
        self.poll_interval = float(poll_interval)
        self.stale_after = float(stale_after)
        self.logger = logger or logging.getLogger("wkpm")
        self._handle: Any = None
        self._lock_file: Optional[str] = None
        self._operation: Optional[str] = None

    # ---- public API ----
    @property
    def held_operation(self) -> Optional[str]:
        return self._operation if self._handle is not None else None

    def lock_path(self, operation: str) -> str:
        return os.path.join(self.lock_dir, lock_name(operation))

    def acquire(self, operation: str, timeout: Optional[float] = None) -> None:
        if self._handle is not None:
            raise LockError(f"Lock already held for '{self._operation}'", operation=operation)

        os.makedirs(self.lock_dir, exist_ok=True)
        self.clean_stale()

        wait = self.timeout if timeout is None else float(timeout)
        path = self.lock_path(operation)
        deadline = time.monotonic() + wait

        while True:
            handle = self._open(path)
            if _try_lock(handle):
                if _same_file(handle, path):
                    break
                # previous holder unlinked the file between our open and lock
                _unlock(handle)
                handle.close()
                continue
            handle.close()
            if time.monotonic() >= deadline:
                raise LockError(f"Cannot acquire lock for '{operation}' (timeout after {wait:g}s)", operation=operation)
            time.sleep(self.poll_interval)

        self._handle = handle
        self._lock_file = path
        self._operation = operation
        self._write_info(operation)
        self.logger.debug(f"Lock acquired: {operation} ({path})")

    def release(self) -> None:
        handle = self._handle
        path = self._lock_file
        self._handle = None
        self._lock_file = None
        self._operation = None

        if handle is not None:
            # unlink while still holding the lock so a waiter cannot win the old inode unnoticed
            if path:
                try:
                    os.remove(path)
                except OSError:
                    pass
            _unlock(handle)
            try:
                handle.close()
            except OSError:
                pass

    def force_release(self, operation: str) -> bool:
        """
        Remove the lock file for `operation` regardless of owner. A process that
        still holds the old handle keeps its OS lock on the unlinked file, so
        only use this for locks known to be abandoned.
        """
        path = self.lock_path(operation)
        if self._operation == operation and self._handle is not None:
            self.release()
            return True
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        self.logger.warning(f"Lock force-released: {operation}")
        return True

    def clean_stale(self) -> List[str]:
        """
        Remove lock files older than `stale_after` whose recorded owner is a
        process on this host that is no longer running.
        """
        removed: List[str] = []
        if not os.path.isdir(self.lock_dir):
            return removed
        now = time.time()
        host = socket.gethostname()
        for name in sorted(os.listdir(self.lock_dir)):
            if not name.endswith(".lock"):
                continue
            path = os.path.join(self.lock_dir, name)
            if path == self._lock_file:
                continue
            try:
                age = now - os.path.getmtime(path)
            except OSError:
                continue
            if age <= self.stale_after:
                continue
            info = _read_info(path)
            if info is None or info.pid <= 0:
                continue
            if info.hostname and info.hostname != host:
                continue
            if psutil.pid_exists(info.pid):
                continue
            try:
                os.remove(path)
            except OSError:
                continue
            removed.append(path)
            self.logger.info(f"Removed stale lock for '{info.operation}' (pid {info.pid} not running)")
        return removed

    def read_info(self, operation: str) -> Optional[LockInfo]:
        return _read_info(self.lock_path(operation))

    @contextmanager
    def hold(self, operation: str, timeout: Optional[float] = None) -> Iterator["LockManager"]:
        self.acquire(operation, timeout=timeout)
        try:
            yield self
        finally:
            self.release()

    def __del__(self) -> None:
        try:
            self.release()
        except Exception:  # noqa: BLE001
            pass

    # ---- internal ----
    @staticmethod
    def _open(path: str):  # noqa: ANN205
        try:
            return open(path, "a+", encoding="utf-8")
        except OSError as e:
            raise LockError(f"Cannot create lock file: {path}", error=str(e)) from e

    def _write_info(self, operation: str) -> None:
        payload = {
            "operation": operation,
            "pid": os.getpid(),
            "timestamp": time.time(),
            "hostname": socket.gethostname(),
        }
        try:
            self._handle.seek(0)
            self._handle.truncate()
            self._handle.write(json.dumps(payload))
            self._handle.flush()
        except OSError as e:
            # Lock is held; the payload is diagnostic only.
            self.logger.warning(f"Unable to write lock payload for '{operation}': {e}")
