from __future__ import annotations

"""
Command-line entry point: `wkpm install`, `wkpm list`, `wkpm kernel-update`.

WHY THIS FILE EXISTS:
The service returns result records; this layer does the operator-facing part
(confirmations, version menus, tables) and maps outcomes to exit codes.
"""

import argparse
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from wkpm import __version__
from wkpm.core.config.manager import ConfigManager
from wkpm.core.config.models import InstallerSettings
from wkpm.core.config.paths import WorkspacePaths
from wkpm.core.errors import InstallerError
from wkpm.core.logger import setup_logging
from wkpm.core.modules.models import OperationResult
from wkpm.core.modules.service import ModuleService
from wkpm.core.prompts import ConsolePrompter, NonInteractivePrompter, Prompter
from wkpm.core.providers.base import SourceProvider
from wkpm.core.providers.github import GitHubProvider, parse_identifier
from wkpm.core.providers.models import Release
from wkpm.core.providers.registry import RegistryProvider


MAX_RELEASES_DISPLAY = 10
MANIFEST_HINT = "php bootstrap/Application/Arcanes/BuildManifest.php"


@dataclass
class CliContext:
    paths: WorkspacePaths
    config: ConfigManager
    settings: InstallerSettings
    prompter: Prompter
    logger: logging.Logger


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="wkpm", description="Install WebKernel modules and update the kernel")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--root", default=".", help="Application root directory (default: current directory)")
    ap.add_argument("-v", "--verbose", action="store_true", help="Print each step of the operation")
    ap.add_argument("-y", "--yes", action="store_true", help="Non-interactive: accept confirmations and default choices")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("install", help="Install a module from a source provider")
    p.add_argument("source", help="Module source (owner/repo, GitHub URL, wk://module, webkernelphp.com/module)")
    p.add_argument("--with-version", dest="with_version", default=None, help="Specific version to install")
    p.add_argument("--latest", action="store_true", help="Install the latest version")
    p.add_argument("--token", default=None, help="Authentication token (required for private repositories)")
    p.add_argument("--save-token", action="store_true", help="Save the token to the config file")
    p.add_argument("--no-backup", action="store_true", help="Skip backup creation")
    p.add_argument("--no-hooks", action="store_true", help="Skip hook execution")
    p.add_argument("--no-validate", action="store_true", help="Skip module validation")
    p.add_argument("--insecure", action="store_true", help="Disable TLS certificate verification")
    p.add_argument("--pre-release", dest="pre_release", action="store_true", help="Include pre-releases")
    p.add_argument("--dry-run", dest="dry_run", action="store_true", help="Simulate without making changes")

    sub.add_parser("list", help="List installed modules")

    k = sub.add_parser("kernel-update", help="Update the WebKernel core bootstrap")
    k.add_argument("--with-version", dest="with_version", default=None, help="Specific version to install")
    k.add_argument("--latest", action="store_true", help="Install the latest version")
    k.add_argument("--token", default=None, help="Authentication token")
    k.add_argument("--no-backup", action="store_true", help="Skip backup creation")
    k.add_argument("--no-hooks", action="store_true", help="Skip hook execution")
    k.add_argument("--pre-release", dest="pre_release", action="store_true", help="Include pre-releases")
    k.add_argument("--dry-run", dest="dry_run", action="store_true", help="Simulate without making changes")
    k.add_argument("--force", action="store_true", help="Reinstall even when already on the selected version")
    return ap


def build_providers(
    ctx: CliContext,
    *,
    token: Optional[str] = None,
    insecure: bool = False,
) -> List[SourceProvider]:
    s = ctx.settings
    github = GitHubProvider(
        token,
        insecure=insecure,
        config=ctx.config,
        prompter=ctx.prompter,
        request_timeout=s.request_timeout_seconds,
        download_timeout=s.download_timeout_seconds,
        logger=ctx.logger,
    )
    registry = RegistryProvider(
        token or ctx.config.get_registry_token(),
        api_base=s.registry_api_base,
        request_timeout=s.request_timeout_seconds,
        download_timeout=s.registry_download_timeout_seconds,
        prompter=ctx.prompter,
        logger=ctx.logger,
    )
    return [github, registry]


def build_service(ctx: CliContext, providers: Sequence[SourceProvider], args: argparse.Namespace) -> ModuleService:
    service = ModuleService.create(ctx.paths, ctx.settings, providers=providers, logger=ctx.logger)
    service.set_execute_hooks(not getattr(args, "no_hooks", False))
    service.set_validate_modules(not getattr(args, "no_validate", False))
    service.set_dry_run(bool(getattr(args, "dry_run", False)))
    return service


def select_version(
    releases: List[Release],
    prompter: Prompter,
    *,
    label: str,
    with_version: Optional[str] = None,
    latest: bool = False,
    current: Optional[str] = None,
) -> str:
    if with_version:
        return with_version
    if latest:
        return releases[0].tag
    options: Dict[str, str] = {}
    for release in releases[:MAX_RELEASES_DISPLAY]:
        text = release.label()
        if current and release.tag == current:
            text += " [CURRENT]"
        options[release.tag] = text
    return prompter.select(label, options, default=releases[0].tag)


def print_table(prompter: Prompter, headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
    cells = [[str(c) for c in headers]] + [[str(c) for c in row] for row in rows]
    widths = [max(len(r[i]) for r in cells) for i in range(len(headers))]
    sep = "+" + "+".join("-" * (w + 2) for w in widths) + "+"

    def fmt(row: List[str]) -> str:
        return "| " + " | ".join(c.ljust(widths[i]) for i, c in enumerate(row)) + " |"

    prompter.info(sep)
    prompter.info(fmt(cells[0]))
    prompter.info(sep)
    for row in cells[1:]:
        prompter.info(fmt(row))
    prompter.info(sep)


def _report_warnings(prompter: Prompter, result: OperationResult) -> None:
    for w in result.warnings:
        prompter.warning(w)


# ---- commands ----
def cmd_install(args: argparse.Namespace, ctx: CliContext) -> int:
    prompter = ctx.prompter
    identifier = args.source

    if args.insecure:
        prompter.warning("SSL verification disabled - INSECURE MODE ACTIVE")
        prompter.warning("This exposes you to man-in-the-middle attacks")
        prompter.warning("DO NOT USE IN PRODUCTION")
        if not prompter.confirm("Continue anyway?", default=False):
            prompter.info("Operation cancelled")
            return 0

    providers = build_providers(ctx, token=args.token, insecure=args.insecure)
    service = build_service(ctx, providers, args)
    provider = service.find_provider(identifier)

    if args.token and args.save_token:
        if isinstance(provider, RegistryProvider):
            ctx.config.save_registry_token(args.token)
        else:
            owner, _repo = parse_identifier(identifier)
            ctx.config.save_github_token(owner, args.token)
        prompter.success("Token saved successfully")

    create_backup = not args.no_backup and prompter.confirm("Create backup before installation?", default=True)

    prompter.info(f"Fetching releases for {identifier}...")
    releases = provider.fetch_releases(identifier, args.pre_release)
    if not releases:
        prompter.error("No releases found")
        return 1

    version = select_version(
        releases,
        prompter,
        label="Select release to install",
        with_version=args.with_version,
        latest=args.latest,
    )
    if not version:
        prompter.error("No version selected")
        return 1

    prompter.info(f"Installing {identifier} version {version}...")
    result = service.install_module(identifier, version, create_backup, include_prereleases=args.pre_release)
    if not result.success:
        prompter.error(result.error or "Installation failed")
        return 1
    if result.dry_run:
        prompter.info("[DRY RUN] Would have installed module")
        return 0

    prompter.success("Module installed successfully!")
    print_table(
        prompter,
        ["Property", "Value"],
        [
            ["Path", result.path or "N/A"],
            ["Version", result.version or "N/A"],
            ["Namespace", result.namespace or "N/A"],
            ["Install Path", result.install_path or "N/A"],
        ],
    )
    _report_warnings(prompter, result)
    prompter.info("Run the following to rebuild the manifest:")
    prompter.info(f"  {MANIFEST_HINT}")
    return 0


def cmd_list(args: argparse.Namespace, ctx: CliContext) -> int:
    service = build_service(ctx, [], args)
    modules = service.list_installed_modules()
    if not modules:
        ctx.prompter.info("No modules installed")
        return 0
    print_table(
        ctx.prompter,
        ["Vendor", "Module", "Version", "Name", "Namespace"],
        [[m.vendor, m.module, m.version, m.name, m.namespace] for m in modules],
    )
    ctx.prompter.info(f"Total: {len(modules)} module(s)")
    return 0


def cmd_kernel_update(args: argparse.Namespace, ctx: CliContext) -> int:
    prompter = ctx.prompter
    providers = build_providers(ctx, token=args.token)
    service = build_service(ctx, providers, args)

    current = service.detect_kernel_version()
    if not current:
        prompter.error("Unable to detect current kernel version")
        return 1
    prompter.info(f"Current kernel version: {current}")

    create_backup = not args.no_backup and prompter.confirm("Create backup before kernel update?", default=True)
    prompter.warning("This will update the core WebKernel bootstrap")
    if not prompter.confirm("Continue with kernel update?", default=False):
        prompter.info("Update cancelled")
        return 0

    repo = ctx.settings.kernel_repo
    prompter.info(f"Fetching kernel releases from {repo}...")
    try:
        releases = service.find_provider(repo).fetch_releases(repo, args.pre_release)
    except InstallerError as e:
        prompter.error(f"Failed to fetch releases: {e}")
        return 1
    if not releases:
        prompter.error("No kernel releases found")
        return 1
    prompter.info(f"Found {len(releases)} release(s)")

    if args.with_version and not any(r.tag == args.with_version for r in releases):
        prompter.error(f"Version {args.with_version} not found in releases")
        return 1

    version = select_version(
        releases,
        prompter,
        label="Select kernel version",
        with_version=args.with_version,
        latest=args.latest,
        current=current,
    )
    if not version:
        prompter.error("No version selected")
        return 1

    if version == current and not args.force:
        prompter.info(f"Already on version {version}. Use --force to reinstall.")
        return 0
    if version == current:
        prompter.warning(f"Reinstalling current version {version}")

    result = service.update_kernel(version, create_backup, include_prereleases=args.pre_release)
    if not result.success:
        prompter.error(result.error or "Kernel update failed")
        return 1
    if result.dry_run:
        prompter.info("[DRY RUN] Would have updated kernel")
        return 0

    prompter.success("Kernel updated successfully!")
    prompter.info(f"  Version: {result.version}")
    _report_warnings(prompter, result)
    return 0


COMMANDS: Dict[str, Callable[[argparse.Namespace, CliContext], int]] = {
    "install": cmd_install,
    "list": cmd_list,
    "kernel-update": cmd_kernel_update,
}


def make_prompter(args: argparse.Namespace) -> Prompter:
    if args.yes:
        return NonInteractivePrompter(assume_yes=True)
    return ConsolePrompter()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    prompter = make_prompter(args)

    base = WorkspacePaths(args.root)
    logger = setup_logging(base.log_dir, verbose=args.verbose)
    try:
        config = ConfigManager(paths=base, logger=logger)
        settings = config.installer_settings()
    except InstallerError as e:
        prompter.error(str(e))
        return 1

    paths = WorkspacePaths(args.root, module_dir_name=settings.module_dir, bootstrap_dir_name=settings.bootstrap_dir)
    ctx = CliContext(paths=paths, config=config, settings=settings, prompter=prompter, logger=logger)
    try:
        return COMMANDS[args.command](args, ctx)
    except InstallerError as e:
        logger.error(f"{args.command} failed: {e}")
        prompter.error(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
