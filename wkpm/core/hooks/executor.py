from __future__ import annotations

"""
Lifecycle hooks shipped inside module and kernel archives.

WHY THIS FILE EXISTS:
A release may carry a small PHP script that prepares the new tree before it
goes live. The script is untrusted input: it is scanned for process-spawning
and eval-style constructs first (a textual net, not a sandbox), then run as a
separate process with a reduced environment and a hard timeout.
"""

import logging
import os
import re
import subprocess
import time
from typing import Any, Dict, List, Optional, Sequence

from wkpm.core.errors import HookError


HOOK_FILES: Dict[str, str] = {
    "install": "webkernel-install.php",
    "update": "webkernel-update.php",
}

FORBIDDEN_FUNCTIONS = (
    "eval",
    "exec",
    "system",
    "passthru",
    "shell_exec",
    "proc_open",
    "popen",
    "pcntl_exec",
    "pcntl_fork",
    "dl",
    "assert",
    "create_function",
)

_FORBIDDEN_RE = {name: re.compile(r"\b" + re.escape(name) + r"\s*\(", re.IGNORECASE) for name in FORBIDDEN_FUNCTIONS}
_VARIABLE_CALL_RE = re.compile(r"\$\w+\s*\(")

# Passed through to the hook when present; everything else is dropped.
_ENV_PASSTHROUGH = ("PATH", "HOME", "SYSTEMROOT", "LANG")


def scan_hook_source(code: str) -> None:
    """
    Raise HookError when the source contains a denied construct.
    """
    for name, pattern in _FORBIDDEN_RE.items():
        if pattern.search(code):
            raise HookError(f"Hook contains forbidden function: {name}", function=name)
    if "`" in code:
        raise HookError("Hook contains forbidden backtick operator")
    if _VARIABLE_CALL_RE.search(code):
        raise HookError("Hook contains potentially dangerous variable function calls")


class HookExecutor:
    def __init__(
        self,
        *,
        timeout: float = 60,
        interpreter: Optional[Sequence[str]] = None,
        logger: Any = None,
    ):
        self.timeout = float(timeout)
        self.interpreter: List[str] = list(interpreter or ["php"])
        self.logger = logger or logging.getLogger("wkpm")

    def execute(self, hook_path: str, hook_type: str) -> bool:
        """
        Run the hook at `hook_path`. Returns False when there is no hook file,
        True when it ran and exited 0. Any other outcome raises HookError.
        """
        if not os.path.isfile(hook_path):
            return False

        try:
            with open(hook_path, "r", encoding="utf-8", errors="replace") as f:
                code = f.read()
        except OSError as e:
            raise HookError(f"Hook execution failed: cannot read {hook_path}: {e}") from e

        scan_hook_source(code)

        hook_dir = os.path.dirname(os.path.abspath(hook_path))
        cmd = self.interpreter + [os.path.abspath(hook_path)]
        started = time.monotonic()
        try:
            proc = subprocess.run(
                cmd,
                cwd=hook_dir,
                env=self._environment(hook_type, hook_dir),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise HookError(f"Hook execution timeout (> {self.timeout:g}s)", hook_type=hook_type) from e
        except OSError as e:
            raise HookError(f"Hook execution failed: {e}", hook_type=hook_type) from e

        duration = time.monotonic() - started
        if proc.stdout.strip():
            self.logger.info(f"[hook:{hook_type}] {proc.stdout.strip()[:2000]}")
        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout or "").strip()[:500]
            raise HookError(
                f"Hook execution failed: exit code {proc.returncode}" + (f": {detail}" if detail else ""),
                hook_type=hook_type,
                returncode=proc.returncode,
            )

        self.logger.info(f"Hook '{hook_type}' completed in {duration:.2f}s")
        return True

    @staticmethod
    def _environment(hook_type: str, hook_dir: str) -> Dict[str, str]:
        env = {k: os.environ[k] for k in _ENV_PASSTHROUGH if k in os.environ}
        env["WEBKERNEL_HOOK_TYPE"] = str(hook_type)
        env["WEBKERNEL_HOOK_DIR"] = hook_dir
        return env
