from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Any, List


@dataclass(frozen=True)
class CommandResult:
    success: bool
    output: str = ""
    error: str = ""


class ComposerManager:
    """
    Regenerates the autoloader after modules change. composer.json is never edited.
    """

    def __init__(self, root: str, *, binary: str = "composer", timeout: float = 600, logger: Any = None):
        self.root = root
        self.binary = binary
        self.timeout = float(timeout)
        self.logger = logger or logging.getLogger("wkpm")

    def dump_autoload(self) -> CommandResult:
        return self.run(["dump-autoload", "--no-interaction"])

    def run(self, args: List[str]) -> CommandResult:
        exe = shutil.which(self.binary)
        if exe is None:
            return CommandResult(False, error=f"Composer binary not found: {self.binary}")
        try:
            proc = subprocess.run(
                [exe, *args],
                cwd=self.root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(False, error=f"composer {' '.join(args)} timed out after {self.timeout:g}s")
        except OSError as e:
            return CommandResult(False, error=f"composer {' '.join(args)} failed to start: {e}")

        if proc.returncode != 0:
            self.logger.warning(f"composer {' '.join(args)} failed (exit {proc.returncode})")
            return CommandResult(False, output=proc.stdout or "", error=f"composer {' '.join(args)} failed:\n{proc.stderr or ''}")
        return CommandResult(True, output=proc.stdout or "", error=proc.stderr or "")
