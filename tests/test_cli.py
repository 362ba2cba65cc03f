from __future__ import annotations

import os
import sys

import pytest

from wkpm import cli
from wkpm.core.config.manager import ConfigManager
from wkpm.core.config.paths import WorkspacePaths
from .helpers.fakes import FakeProvider, ScriptedPrompter, kernel_app_php, kernel_zip, module_php, module_zip, release


def _configure(root: str, **installer) -> None:
    base = {"kernel_repo": "fake/bootstrap", "dump_autoload": False, "hook_interpreter": [sys.executable]}
    base.update(installer)
    ConfigManager(paths=WorkspacePaths(root)).set_setting("installer", base)


def _use_provider(monkeypatch, provider: FakeProvider) -> None:
    monkeypatch.setattr(cli, "build_providers", lambda ctx, **kw: [provider])


def _bootstrap(root: str, version: str) -> None:
    os.makedirs(os.path.join(root, "bootstrap"), exist_ok=True)
    with open(os.path.join(root, "bootstrap", "app.php"), "w", encoding="utf-8") as f:
        f.write(kernel_app_php(version))


def test_list_without_modules(tmp_path, capsys):
    assert cli.main(["--root", str(tmp_path), "list"]) == 0
    assert "No modules installed" in capsys.readouterr().out


def test_list_prints_table(tmp_path, capsys):
    path = tmp_path / "app-platform" / "Acme" / "Blog"
    path.mkdir(parents=True)
    (path / "BlogModule.php").write_text(module_php(), encoding="utf-8")

    assert cli.main(["--root", str(tmp_path), "list"]) == 0
    out = capsys.readouterr().out
    assert "| Vendor" in out
    assert "| Acme   | Blog   | 1.2.0" in out
    assert "Total: 1 module(s)" in out


def test_install_with_yes_and_latest(tmp_path, capsys, monkeypatch):
    root = str(tmp_path)
    _configure(root)
    _use_provider(monkeypatch, FakeProvider([release("v1.3.0"), release("v1.2.0")], {"v1.3.0": module_zip(version="1.3.0")}))

    assert cli.main(["--root", root, "-y", "install", "fake/blog", "--latest"]) == 0
    out = capsys.readouterr().out
    assert "Module installed successfully!" in out
    assert "App\\Module\\Acme\\Blog" in out
    assert cli.MANIFEST_HINT in out
    assert (tmp_path / "app-platform" / "Acme" / "Blog" / "BlogModule.php").is_file()


def test_install_dry_run(tmp_path, capsys, monkeypatch):
    root = str(tmp_path)
    _configure(root)
    provider = FakeProvider([release("v1.2.0")], {"v1.2.0": module_zip()})
    _use_provider(monkeypatch, provider)

    assert cli.main(["--root", root, "-y", "install", "fake/blog", "--with-version", "v1.2.0", "--dry-run"]) == 0
    assert "[DRY RUN] Would have installed module" in capsys.readouterr().out
    assert provider.download_calls == []


def test_install_failure_exit_code(tmp_path, capsys, monkeypatch):
    root = str(tmp_path)
    _configure(root)
    _use_provider(monkeypatch, FakeProvider([release("v1.2.0")], {"v1.2.0": module_zip(extends="Base")}))

    assert cli.main(["--root", root, "-y", "install", "fake/blog", "--latest"]) == 1
    assert "Module validation failed" in capsys.readouterr().err


def test_unsupported_source(tmp_path, capsys, monkeypatch):
    root = str(tmp_path)
    _configure(root)
    _use_provider(monkeypatch, FakeProvider([], {}))
    assert cli.main(["--root", root, "-y", "install", "svn://acme/blog"]) == 1
    assert "Error: No provider found for this source" in capsys.readouterr().err


def test_kernel_update_requires_detectable_version(tmp_path, capsys):
    assert cli.main(["--root", str(tmp_path), "-y", "kernel-update"]) == 1
    assert "Unable to detect current kernel version" in capsys.readouterr().err


def test_kernel_update_same_version_needs_force(tmp_path, capsys, monkeypatch):
    root = str(tmp_path)
    _configure(root)
    _bootstrap(root, "1.0.0")
    provider = FakeProvider([release("1.0.0")], {"1.0.0": kernel_zip("1.0.0")})
    _use_provider(monkeypatch, provider)

    assert cli.main(["--root", root, "-y", "kernel-update", "--with-version", "1.0.0"]) == 0
    assert "Already on version 1.0.0. Use --force to reinstall." in capsys.readouterr().out
    assert provider.download_calls == []

    assert cli.main(["--root", root, "-y", "kernel-update", "--with-version", "1.0.0", "--force"]) == 0
    assert provider.download_calls == ["1.0.0"]


def test_kernel_update_to_new_version(tmp_path, capsys, monkeypatch):
    root = str(tmp_path)
    _configure(root)
    _bootstrap(root, "1.0.0")
    _use_provider(monkeypatch, FakeProvider([release("2.0.0"), release("1.0.0")], {"2.0.0": kernel_zip("2.0.0")}))

    assert cli.main(["--root", root, "-y", "kernel-update"]) == 0
    out = capsys.readouterr().out
    assert "Current kernel version: 1.0.0" in out
    assert "Kernel updated successfully!" in out
    assert "  Version: 2.0.0" in out


def test_kernel_update_unknown_requested_version(tmp_path, capsys, monkeypatch):
    root = str(tmp_path)
    _configure(root)
    _bootstrap(root, "1.0.0")
    _use_provider(monkeypatch, FakeProvider([release("2.0.0")], {"2.0.0": kernel_zip("2.0.0")}))

    assert cli.main(["--root", root, "-y", "kernel-update", "--with-version", "3.0.0"]) == 1
    assert "Version 3.0.0 not found in releases" in capsys.readouterr().err


def test_invalid_settings_fail_fast(tmp_path, capsys):
    root = str(tmp_path)
    ConfigManager(paths=WorkspacePaths(root)).set_setting("installer", {"backup_keep_count": 0})
    assert cli.main(["--root", root, "list"]) == 1
    assert "Invalid installer settings" in capsys.readouterr().err


def test_select_version_marks_current_and_caps_menu():
    releases = [release(f"1.{i}.0") for i in range(12, 0, -1)]
    prompter = ScriptedPrompter(selections=["1.10.0"])
    choice = cli.select_version(releases, prompter, label="Select kernel version", current="1.10.0")
    assert choice == "1.10.0"

    chosen = {}

    class Recorder(ScriptedPrompter):
        def select(self, label, options, default=None):  # noqa: ANN001, ANN201
            chosen.update(options)
            return default

    assert cli.select_version(releases, Recorder(), label="x", current="1.10.0") == "1.12.0"
    assert len(chosen) == cli.MAX_RELEASES_DISPLAY
    assert chosen["1.10.0"].endswith("[CURRENT]")


def test_select_version_shortcuts():
    releases = [release("2.0.0"), release("1.0.0")]
    assert cli.select_version(releases, ScriptedPrompter(), label="x", with_version="1.0.0") == "1.0.0"
    assert cli.select_version(releases, ScriptedPrompter(), label="x", latest=True) == "2.0.0"


def test_print_table_alignment():
    prompter = ScriptedPrompter()
    cli.print_table(prompter, ["Property", "Value"], [["Path", "/srv/app"], ["Version", "v1"]])
    lines = [m for _, m in prompter.messages]
    assert lines[0] == "+----------+----------+"
    assert lines[1] == "| Property | Value    |"
    assert lines[3] == "| Path     | /srv/app |"
    assert len({len(line) for line in lines}) == 1


@pytest.mark.parametrize("argv", [["install"], ["bogus"], []])
def test_parser_rejects_bad_usage(argv):
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(argv)
