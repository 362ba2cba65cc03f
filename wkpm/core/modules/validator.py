from __future__ import annotations

import logging
import os
from typing import Any, List

from wkpm.core.modules.metadata import ENTRY_METHOD, find_declaration_file, metadata_from_declaration, parse_declaration_file
from wkpm.core.modules.models import ValidationResult


BASE_CLASS = "WebkernelApp"


class ModuleValidator:
    """
    Structural checks on a downloaded module tree.

    Errors block the install; warnings are reported and ignored.
    """

    def __init__(self, *, base_class: str = BASE_CLASS, logger: Any = None):
        self.base_class = base_class
        self.logger = logger or logging.getLogger("wkpm")

    def validate(self, module_path: str) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        if not os.path.isdir(module_path):
            errors.append(f"Module directory does not exist: {module_path}")
            return ValidationResult(False, errors, warnings)

        module_file = find_declaration_file(module_path)
        if module_file is None:
            errors.append("No valid *Module.php file found in module root")
            return ValidationResult(False, errors, warnings)

        decl = parse_declaration_file(module_file)
        if decl is None:
            errors.append(f"Failed to parse module configuration from {module_file}")
            return ValidationResult(False, errors, warnings)

        metadata = metadata_from_declaration(decl)
        if not metadata.install_path:
            warnings.append("Module does not declare installPath() - installation location undefined")
        if not decl.config.get("namespace"):
            warnings.append("Module does not declare namespace in installPath()")

        cls = decl.main_class
        if cls is None or cls.extends_short.lower() != self.base_class.lower():
            errors.append(f"Module class must extend {self.base_class}")
        if cls is None or not cls.has_method(ENTRY_METHOD):
            errors.append(f"Module class must implement {ENTRY_METHOD}() method")

        for w in warnings:
            self.logger.warning(f"Module validation warning: {w}")
        return ValidationResult(not errors, errors, warnings)
