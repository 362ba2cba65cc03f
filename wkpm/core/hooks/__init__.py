from __future__ import annotations

from wkpm.core.hooks.executor import HOOK_FILES, HookExecutor, scan_hook_source

__all__ = ["HOOK_FILES", "HookExecutor", "scan_hook_source"]
