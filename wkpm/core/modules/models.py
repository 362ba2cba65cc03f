from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ModuleMetadata(BaseModel):
    """
    Configuration a module declares in its `*Module.php` builder chain.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = ""
    name: str = ""
    version: str = "1.0.0"
    description: str = ""
    install_path: str = ""
    namespace: str = ""
    php_version: str = "8.4"
    webkernel_version_constraint: str = ">=1.0.0"
    support_elements: Dict[str, str] = Field(default_factory=dict)
    extra: Dict[str, str] = Field(default_factory=dict)
    class_name: str = ""
    source_file: str = ""


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def error_text(self) -> str:
        return "\n".join(self.errors)


@dataclass(frozen=True)
class InstalledModule:
    vendor: str
    module: str
    path: str
    version: str = "unknown"
    name: str = ""
    namespace: str = ""


@dataclass
class OperationResult:
    success: bool
    error: Optional[str] = None
    dry_run: bool = False
    path: Optional[str] = None
    version: Optional[str] = None
    namespace: Optional[str] = None
    install_path: Optional[str] = None
    backup_path: Optional[str] = None
    failed_stage: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
