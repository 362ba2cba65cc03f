from __future__ import annotations

import json
import os
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


REDACTED = "***REDACTED***"

# key fragments: github_token, registry_token, Authorization, api_key ...
_SENSITIVE_KEY = re.compile(r"token|password|secret|authorization|api_?key|^key$", re.IGNORECASE)
_URL_SECRET = re.compile(r"((?:access_)?token=)[^&\s]+|(//)[^/@\s:]+:[^/@\s]+@", re.IGNORECASE)


def _scrub_url(text: str) -> str:
    return _URL_SECRET.sub(lambda m: f"{m.group(1)}{REDACTED}" if m.group(1) else "//", text)


def redact(obj: Any) -> Any:
    """
    Copy of `obj` with token-like keys masked and credentials stripped from URLs.
    """
    if isinstance(obj, dict):
        return {k: REDACTED if _SENSITIVE_KEY.search(str(k)) else redact(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    if isinstance(obj, str) and "://" in obj:
        return _scrub_url(obj)
    return obj


@dataclass(frozen=True)
class EventLogger:
    """
    Append-only JSONL log of install/update lifecycle events.
    """

    path: str
    _lock: threading.Lock = field(default_factory=threading.Lock, compare=False, repr=False)

    def log(self, trace_id: str, event_type: str, details: Optional[Dict[str, Any]] = None) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        line = json.dumps(
            {
                "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "trace_id": trace_id,
                "event": event_type,
                "details": redact(details or {}),
            },
            ensure_ascii=False,
        )
        with self._lock, open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
