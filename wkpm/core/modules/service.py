from __future__ import annotations

"""
Install and kernel-update orchestration.

WHY THIS FILE EXISTS:
Both operations walk the same state machine:
lock -> resolve release -> download -> hook -> validate -> metadata -> backup
-> swap -> prune -> unlock. The swap is the commit point: a failure before it
removes the staging directory and restores any backup taken; work after it is
best effort and reported as warnings.
"""

import glob
import logging
import os
import re
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from wkpm.core.backup.manager import BackupManager
from wkpm.core.config.models import InstallerSettings
from wkpm.core.config.paths import WorkspacePaths
from wkpm.core.errors import InstallerError, ModuleError, ValidationError
from wkpm.core.events import EventLogger
from wkpm.core.hooks.executor import HOOK_FILES, HookExecutor
from wkpm.core.locks.manager import LockManager
from wkpm.core.modules.composer import ComposerManager
from wkpm.core.modules.metadata import from_module_dir
from wkpm.core.modules.models import InstalledModule, ModuleMetadata, OperationResult
from wkpm.core.modules.validator import ModuleValidator
from wkpm.core.providers.base import SourceProvider
from wkpm.core.providers.models import Release


KERNEL_BACKUP_LABEL = "kernel"
KERNEL_LOCK = "update-kernel"
INSTALLING_PREFIX = ".installing-"
UPDATING_SUFFIX = ".updating"
OLD_SUFFIX = ".old"
PRESERVE_PREFIX = "wk-backup-"

ERR_NO_RELEASES = "No releases found"
ERR_VERSION_NOT_FOUND = "Version {} not found"
ERR_NO_PROVIDER = "No provider found for this source"
ERR_NO_METADATA = "Cannot extract module metadata - no valid module file found"
ERR_NO_INSTALL_PATH = "Module does not declare installPath() in configureModule()"
ERR_NO_NAMESPACE = "Module does not declare namespace in installPath()"
ERR_VALIDATION_FAILED = "Module validation failed:\n{}"
ERR_NO_KERNEL_RELEASES = "No kernel releases found"
ERR_KERNEL_VERSION_NOT_FOUND = "Kernel version {} not found"

_VERSION_RE = re.compile(r"public\s+const\s+string\s+VERSION\s*=\s*['\"]([^'\"]+)['\"]")


@dataclass
class _Run:
    trace_id: str
    stage: str = "lock"


class ModuleService:
    def __init__(
        self,
        *,
        paths: WorkspacePaths,
        lock: LockManager,
        backup: BackupManager,
        composer: ComposerManager,
        validator: ModuleValidator,
        hooks: HookExecutor,
        settings: Optional[InstallerSettings] = None,
        events: Optional[EventLogger] = None,
        logger: Any = None,
    ):
        self.paths = paths
        self.lock = lock
        self.backup = backup
        self.composer = composer
        self.validator = validator
        self.hooks = hooks
        self.settings = settings or InstallerSettings()
        self.events = events
        self.logger = logger or logging.getLogger("wkpm")
        self.providers: List[SourceProvider] = []

        self.execute_hooks = True
        self.validate_modules = True
        self.dry_run = False

    @classmethod
    def create(
        cls,
        paths: WorkspacePaths,
        settings: Optional[InstallerSettings] = None,
        *,
        providers: Sequence[SourceProvider] = (),
        logger: Any = None,
    ) -> "ModuleService":
        settings = settings or InstallerSettings()
        logger = logger or logging.getLogger("wkpm")
        service = cls(
            paths=paths,
            lock=LockManager(
                paths.lock_dir,
                timeout=settings.lock_timeout_seconds,
                poll_interval=settings.lock_poll_interval_seconds,
                stale_after=settings.stale_lock_seconds,
                logger=logger,
            ),
            backup=BackupManager(
                paths.backup_dir,
                keep_count=settings.backup_keep_count,
                excluded_dirs=[paths.state_dir],
                logger=logger,
            ),
            composer=ComposerManager(paths.root_abs, binary=settings.composer_binary, logger=logger),
            validator=ModuleValidator(logger=logger),
            hooks=HookExecutor(timeout=settings.hook_timeout_seconds, interpreter=settings.hook_interpreter, logger=logger),
            settings=settings,
            events=EventLogger(paths.operations_log),
            logger=logger,
        )
        for provider in providers:
            service.add_provider(provider)
        return service

    # ---- configuration ----
    def add_provider(self, provider: SourceProvider) -> None:
        self.providers.append(provider)

    def set_execute_hooks(self, execute: bool) -> None:
        self.execute_hooks = bool(execute)

    def set_validate_modules(self, validate: bool) -> None:
        self.validate_modules = bool(validate)

    def set_dry_run(self, dry_run: bool) -> None:
        self.dry_run = bool(dry_run)

    def find_provider(self, identifier: str) -> SourceProvider:
        for provider in self.providers:
            if provider.supports(identifier):
                return provider
        raise ModuleError(ERR_NO_PROVIDER, identifier=identifier)

    # ---- install ----
    def install_module(
        self,
        identifier: str,
        version: str,
        create_backup: bool = True,
        include_prereleases: bool = False,
    ) -> OperationResult:
        if self.dry_run:
            return OperationResult(success=True, dry_run=True)

        run = _Run(trace_id=uuid.uuid4().hex)
        self._event(run, "module.install.started", {"identifier": identifier, "version": version})
        operation = f"install-{identifier}"
        self._step(f"  • Acquiring lock for {operation}...")
        try:
            self.lock.acquire(operation)
        except InstallerError as e:
            return self._failure(run, "module.install.failed", e)

        try:
            result = self._install(run, identifier, version, create_backup, include_prereleases)
        except InstallerError as e:
            return self._failure(run, "module.install.failed", e)
        except Exception as e:  # noqa: BLE001
            self.logger.exception(f"Unexpected failure while installing {identifier}")
            return self._failure(run, "module.install.failed", e)
        finally:
            self.lock.release()

        self._event(run, "module.install.succeeded", {"identifier": identifier, "version": result.version, "path": result.path})
        return result

    def _install(
        self,
        run: _Run,
        identifier: str,
        version: str,
        create_backup: bool,
        include_prereleases: bool,
    ) -> OperationResult:
        run.stage = "resolve"
        provider, release = self._resolve(identifier, version, include_prereleases, ERR_NO_RELEASES, ERR_VERSION_NOT_FOUND)

        os.makedirs(self.paths.module_dir, exist_ok=True)
        temp_dir = os.path.join(self.paths.module_dir, f"{INSTALLING_PREFIX}{uuid.uuid4().hex[:13]}")
        target_dir: Optional[str] = None
        backup_path: Optional[str] = None

        try:
            run.stage = "download"
            self._step(f"  • Downloading release to {temp_dir}...")
            provider.download_release(release, temp_dir)

            if self.execute_hooks:
                self._run_hook(run, temp_dir, "install")

            if self.validate_modules:
                run.stage = "validate"
                self._step("  • Validating module...")
                result = self.validator.validate(temp_dir)
                if not result.valid:
                    raise ValidationError(ERR_VALIDATION_FAILED.format(result.error_text()), errors=result.errors)

            run.stage = "metadata"
            self._step("  • Extracting module metadata...")
            metadata = self._require_metadata(temp_dir)
            target_dir = self.paths.resolve_inside(metadata.install_path)
            label = os.path.basename(os.path.normpath(metadata.install_path))

            if create_backup and os.path.isdir(target_dir):
                run.stage = "backup"
                backup_path = self.backup.create_backup(target_dir, label)
                self._step(f"  • Backup created at: {backup_path}")

            run.stage = "swap"
            if os.path.isdir(target_dir):
                self._step("  • Removing existing module directory...")
                shutil.rmtree(target_dir)
            self._step(f"  • Installing module to {target_dir}...")
            os.makedirs(os.path.dirname(target_dir), exist_ok=True)
            shutil.move(temp_dir, target_dir)
        except Exception:
            self._rollback_install(temp_dir, target_dir, backup_path)
            raise

        run.stage = "cleanup"
        warnings = self._after_install(label if create_backup else None)
        return OperationResult(
            success=True,
            path=target_dir,
            version=release.tag,
            namespace=metadata.namespace,
            install_path=metadata.install_path,
            backup_path=backup_path,
            warnings=warnings,
        )

    def _require_metadata(self, module_dir: str) -> ModuleMetadata:
        metadata = from_module_dir(module_dir)
        if metadata is None:
            raise ModuleError(ERR_NO_METADATA)
        if not metadata.install_path:
            raise ModuleError(ERR_NO_INSTALL_PATH)
        if not metadata.namespace:
            raise ModuleError(ERR_NO_NAMESPACE)
        return metadata

    def _rollback_install(self, temp_dir: str, target_dir: Optional[str], backup_path: Optional[str]) -> None:
        if os.path.isdir(temp_dir):
            self._step("  • Cleaning up temporary directory...")
            shutil.rmtree(temp_dir, ignore_errors=True)
        if backup_path and target_dir and os.path.isdir(backup_path):
            self._step("  • Restoring from backup...")
            try:
                self.backup.restore_backup(backup_path, target_dir)
            except (InstallerError, OSError) as e:
                # the original failure is what the caller sees
                self.logger.error(f"Restore from {backup_path} failed: {e}")

    def _after_install(self, backup_label: Optional[str]) -> List[str]:
        warnings: List[str] = []
        if self.settings.dump_autoload:
            self._step("  • Dumping composer autoload...")
            result = self.composer.dump_autoload()
            if not result.success:
                warnings.append(f"Autoload regeneration failed: {result.error.strip()}")
        if backup_label:
            self._step("  • Cleaning old backups...")
            try:
                self.backup.clean_old_backups(backup_label)
            except OSError as e:
                warnings.append(f"Pruning old backups failed: {e}")
        for w in warnings:
            self.logger.warning(w)
        return warnings

    # ---- kernel ----
    def update_kernel(self, version: str, create_backup: bool = True, include_prereleases: bool = False) -> OperationResult:
        if self.dry_run:
            return OperationResult(success=True, dry_run=True)

        run = _Run(trace_id=uuid.uuid4().hex)
        self._event(run, "kernel.update.started", {"version": version})
        self._step(f"  • Acquiring lock for {KERNEL_LOCK}...")
        try:
            self.lock.acquire(KERNEL_LOCK)
        except InstallerError as e:
            return self._failure(run, "kernel.update.failed", e)

        try:
            result = self._update_kernel(run, version, create_backup, include_prereleases)
        except InstallerError as e:
            return self._failure(run, "kernel.update.failed", e)
        except Exception as e:  # noqa: BLE001
            self.logger.exception("Unexpected failure while updating the kernel")
            return self._failure(run, "kernel.update.failed", e)
        finally:
            self.lock.release()

        self._event(run, "kernel.update.succeeded", {"version": result.version})
        return result

    def _update_kernel(self, run: _Run, version: str, create_backup: bool, include_prereleases: bool) -> OperationResult:
        base = self.paths.bootstrap_dir
        repo = self.settings.kernel_repo
        self._clean_legacy_state(base)

        run.stage = "resolve"
        provider, release = self._resolve(repo, version, include_prereleases, ERR_NO_KERNEL_RELEASES, ERR_KERNEL_VERSION_NOT_FOUND)

        temp_dir = base + UPDATING_SUFFIX
        old_dir = base + OLD_SUFFIX
        if os.path.isdir(temp_dir):
            self.logger.warning(f"Removing leftover staging directory {temp_dir}")
            shutil.rmtree(temp_dir)

        backup_path: Optional[str] = None
        if create_backup and os.path.isdir(base):
            run.stage = "backup"
            backup_path = self.backup.create_backup(base, KERNEL_BACKUP_LABEL)
            self._step(f"  • Backup created at: {backup_path}")

        preserved = list(self.settings.preserved_kernel_dirs)
        preserve_dir = tempfile.mkdtemp(prefix=PRESERVE_PREFIX)
        try:
            run.stage = "preserve"
            self._step(f"  • Preserving directories: {', '.join(preserved)}")
            _copy_dirs(base, preserve_dir, preserved)

            run.stage = "download"
            self._step(f"  • Downloading release to {temp_dir}...")
            provider.download_release(release, temp_dir)

            self._step("  • Restoring preserved directories...")
            _replace_dirs(preserve_dir, temp_dir, preserved)

            if self.execute_hooks:
                self._run_hook(run, temp_dir, "update")

            run.stage = "swap"
            self._swap(base, temp_dir, old_dir)
        except Exception:
            if os.path.isdir(temp_dir):
                self._step("  • Cleaning up temporary directory...")
                shutil.rmtree(temp_dir, ignore_errors=True)
            shutil.rmtree(preserve_dir, ignore_errors=True)
            if backup_path and not os.path.isdir(base):
                self._step("  • Restoring from backup...")
                try:
                    self.backup.restore_backup(backup_path, base)
                except (InstallerError, OSError) as e:
                    self.logger.error(f"Restore from {backup_path} failed: {e}")
            raise

        run.stage = "cleanup"
        warnings: List[str] = []
        if os.path.isdir(old_dir):
            self._step("  • Cleaning up old kernel...")
            try:
                shutil.rmtree(old_dir)
            except OSError as e:
                warnings.append(f"Could not remove {old_dir}: {e}")
        shutil.rmtree(preserve_dir, ignore_errors=True)
        if create_backup:
            self._step("  • Cleaning old backups...")
            try:
                self.backup.clean_old_backups(KERNEL_BACKUP_LABEL)
            except OSError as e:
                warnings.append(f"Pruning old backups failed: {e}")
        for w in warnings:
            self.logger.warning(w)

        return OperationResult(success=True, path=base, version=release.tag, backup_path=backup_path, warnings=warnings)

    def _swap(self, base: str, temp_dir: str, old_dir: str) -> None:
        if not os.path.isdir(base):
            self._step(f"  • Installing kernel to {base}...")
            os.replace(temp_dir, base)
            return
        if os.path.isdir(old_dir):
            self._step("  • Removing existing old kernel directory...")
            shutil.rmtree(old_dir)
        self._step("  • Moving current kernel to .old...")
        os.replace(base, old_dir)
        self._step(f"  • Installing kernel to {base}...")
        try:
            os.replace(temp_dir, base)
        except OSError:
            os.replace(old_dir, base)
            raise

    def _clean_legacy_state(self, base: str) -> None:
        """
        Older installers kept backups and locks under <bootstrap>/cache. They
        must not be carried into kernel backups or the new tree.
        """
        cache = os.path.join(base, "cache")
        if not os.path.isdir(cache):
            return
        patterns = [
            os.path.join(cache, "webkernel", "backups"),
            os.path.join(cache, "**", "backups"),
            os.path.join(cache, "**", ".locks"),
        ]
        for pattern in patterns:
            for path in sorted(glob.glob(pattern, recursive=True)):
                if os.path.isdir(path):
                    self._step(f"  • Cleaning legacy state: {os.path.relpath(path, base)}")
                    shutil.rmtree(path, ignore_errors=True)

    def detect_kernel_version(self) -> Optional[str]:
        try:
            with open(self.paths.kernel_app_file, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except OSError:
            return None
        m = _VERSION_RE.search(content)
        return m.group(1) if m else None

    # ---- listing ----
    def list_installed_modules(self) -> List[InstalledModule]:
        modules: List[InstalledModule] = []
        root = self.paths.module_dir
        for vendor in _child_dirs(root):
            vendor_path = os.path.join(root, vendor)
            for module in _child_dirs(vendor_path):
                path = os.path.join(vendor_path, module)
                metadata = self._metadata_or_none(path)
                modules.append(
                    InstalledModule(
                        vendor=vendor,
                        module=module,
                        path=path,
                        version=metadata.version if metadata else "unknown",
                        name=(metadata.name if metadata else "") or module,
                        namespace=metadata.namespace if metadata else "",
                    )
                )
        return modules

    def _metadata_or_none(self, path: str) -> Optional[ModuleMetadata]:
        try:
            return from_module_dir(path)
        except (OSError, ValueError) as e:
            self.logger.debug(f"Skipping metadata for {path}: {e}")
            return None

    # ---- shared steps ----
    def _resolve(
        self,
        identifier: str,
        version: str,
        include_prereleases: bool,
        err_empty: str,
        err_missing: str,
    ) -> Tuple[SourceProvider, Release]:
        self._step(f"  • Finding provider for {identifier}...")
        provider = self.find_provider(identifier)
        self._step(f"  • Fetching releases for {identifier}...")
        releases = provider.fetch_releases(identifier, include_prereleases)
        if not releases:
            raise ModuleError(err_empty, identifier=identifier)
        self._step(f"  • Looking for version {version}...")
        for release in releases:
            if release.tag == version:
                return provider, release
        raise ModuleError(err_missing.format(version), identifier=identifier, version=version)

    def _run_hook(self, run: _Run, tree: str, hook_type: str) -> None:
        hook_file = os.path.join(tree, HOOK_FILES[hook_type])
        if not os.path.isfile(hook_file):
            return
        run.stage = "hook"
        self._step(f"  • Executing {hook_type} hook...")
        self.hooks.execute(hook_file, hook_type)

    def _step(self, message: str) -> None:
        self.logger.info(message)

    def _event(self, run: _Run, event_type: str, details: dict) -> None:
        if self.events is None:
            return
        try:
            self.events.log(run.trace_id, event_type, details)
        except OSError as e:
            self.logger.warning(f"Unable to write operations log: {e}")

    def _failure(self, run: _Run, event_type: str, error: Exception) -> OperationResult:
        message = str(error) or error.__class__.__name__
        self.logger.error(f"[{run.stage}] {message}")
        code = error.code if isinstance(error, InstallerError) else "unexpected_error"
        self._event(run, event_type, {"stage": run.stage, "code": code, "error": message})
        return OperationResult(success=False, error=message, failed_stage=run.stage)


def _child_dirs(path: str) -> List[str]:
    if not os.path.isdir(path):
        return []
    out: List[str] = []
    for name in sorted(os.listdir(path)):
        if name.startswith("."):
            continue
        if os.path.isdir(os.path.join(path, name)):
            out.append(name)
    return out


def _copy_dirs(base: str, dest: str, names: Sequence[str]) -> None:
    for name in names:
        src = os.path.join(base, name)
        if os.path.isdir(src):
            shutil.copytree(src, os.path.join(dest, name), symlinks=True)


def _replace_dirs(source: str, base: str, names: Sequence[str]) -> None:
    for name in names:
        src = os.path.join(source, name)
        if not os.path.isdir(src):
            continue
        dst = os.path.join(base, name)
        if os.path.isdir(dst):
            shutil.rmtree(dst)
        shutil.copytree(src, dst, symlinks=True)
