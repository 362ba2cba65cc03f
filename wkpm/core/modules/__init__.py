from __future__ import annotations

from wkpm.core.modules.models import InstalledModule, ModuleMetadata, OperationResult, ValidationResult
from wkpm.core.modules.service import ModuleService
from wkpm.core.modules.validator import ModuleValidator

__all__ = [
    "InstalledModule",
    "ModuleMetadata",
    "ModuleService",
    "ModuleValidator",
    "OperationResult",
    "ValidationResult",
]
