from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from wkpm.core.events import redact


@dataclass
class InstallerError(Exception):
    code: str
    user_message: str
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.user_message)

    def __str__(self) -> str:
        return self.user_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "context": redact(self.context or {}),
        }


# ---- Core types ----
class LockError(InstallerError):
    def __init__(self, user_message: str = "Unable to acquire lock.", **ctx: Any):
        super().__init__("lock_error", user_message, context=ctx)


class NetworkError(InstallerError):
    def __init__(self, user_message: str = "Network request failed.", **ctx: Any):
        super().__init__("network_error", user_message, context=ctx)


class IntegrityError(InstallerError):
    def __init__(self, user_message: str = "Checksum verification failed.", **ctx: Any):
        super().__init__("integrity_error", user_message, context=ctx)


class ModuleError(InstallerError):
    def __init__(self, user_message: str = "Module operation failed.", **ctx: Any):
        super().__init__("module_error", user_message, context=ctx)


class AuthenticationRequired(ModuleError):
    def __init__(self, user_message: str = "This module requires authentication. Use --token=YOUR_TOKEN", **ctx: Any):
        InstallerError.__init__(self, "authentication_required", user_message, context=ctx)


class ValidationError(InstallerError):
    def __init__(self, user_message: str = "Module validation failed.", **ctx: Any):
        super().__init__("validation_error", user_message, context=ctx)


class HookError(InstallerError):
    def __init__(self, user_message: str = "Hook execution failed.", **ctx: Any):
        super().__init__("hook_error", user_message, context=ctx)


class ConfigError(InstallerError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, context=ctx)


class PromptUnavailable(InstallerError):
    def __init__(self, user_message: str = "Interactive input is required but not available.", **ctx: Any):
        super().__init__("prompt_unavailable", user_message, context=ctx)
