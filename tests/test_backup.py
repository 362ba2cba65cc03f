from __future__ import annotations

import os
import time

import pytest

from wkpm.core.backup.manager import META_SUFFIX, BackupManager, directory_size
from wkpm.core.errors import ModuleError


def _mk_module(root: str, marker: str = "v1") -> str:
    path = os.path.join(root, "app-platform", "Acme", "Blog")
    os.makedirs(os.path.join(path, "src"), exist_ok=True)
    with open(os.path.join(path, "BlogModule.php"), "w", encoding="utf-8") as f:
        f.write(f"<?php // {marker}\n")
    with open(os.path.join(path, "src", "Post.php"), "w", encoding="utf-8") as f:
        f.write("<?php class Post {}\n")
    return path


def test_create_backup_copies_tree_and_records_size(tmp_path):
    target = _mk_module(str(tmp_path))
    mgr = BackupManager(str(tmp_path / ".webkernel" / "backups"))
    backup = mgr.create_backup(target, "Blog")

    assert os.path.basename(backup).startswith("Blog_")
    assert os.path.isfile(os.path.join(backup, "src", "Post.php"))
    meta = mgr.read_metadata(backup)
    assert meta is not None
    assert meta["label"] == "Blog"
    assert meta["source"] == os.path.abspath(target)
    assert meta["size_bytes"] == directory_size(backup)
    # sidecar metadata is not part of the measured tree
    assert os.path.isfile(backup + META_SUFFIX)


def test_create_backup_keeps_lock_files(tmp_path):
    target = _mk_module(str(tmp_path))
    with open(os.path.join(target, "composer.lock"), "wb") as f:
        f.write(b'{"packages": []}\n')
    with open(os.path.join(target, "src", "yarn.lock"), "wb") as f:
        f.write(b"# yarn lockfile v1\n")

    backup = BackupManager(str(tmp_path / "backups")).create_backup(target, "Blog")
    with open(os.path.join(backup, "composer.lock"), "rb") as f:
        assert f.read() == b'{"packages": []}\n'
    assert os.path.isfile(os.path.join(backup, "src", "yarn.lock"))


def test_create_backup_of_missing_directory_fails(tmp_path):
    mgr = BackupManager(str(tmp_path / "backups"))
    with pytest.raises(ModuleError):
        mgr.create_backup(str(tmp_path / "nope"), "nope")


def test_excluded_directories_are_not_copied(tmp_path):
    root = str(tmp_path)
    os.makedirs(os.path.join(root, "bootstrap", "cache"), exist_ok=True)
    state = os.path.join(root, "bootstrap", ".webkernel")
    os.makedirs(os.path.join(state, "locks"), exist_ok=True)
    with open(os.path.join(root, "bootstrap", "app.php"), "w", encoding="utf-8") as f:
        f.write("<?php\n")
    mgr = BackupManager(os.path.join(state, "backups"), excluded_dirs=[state])
    backup = mgr.create_backup(os.path.join(root, "bootstrap"), "kernel")
    assert os.path.isfile(os.path.join(backup, "app.php"))
    assert not os.path.exists(os.path.join(backup, ".webkernel"))


def test_clean_old_backups_keeps_newest(tmp_path):
    target = _mk_module(str(tmp_path))
    mgr = BackupManager(str(tmp_path / "backups"), keep_count=5)
    created = [mgr.create_backup(target, "Blog") for _ in range(5)]
    now = time.time()
    for i, path in enumerate(created):
        os.utime(path, (now - 100 + i, now - 100 + i))

    removed = mgr.clean_old_backups("Blog", keep_count=2)
    assert sorted(removed) == sorted(created[:3])
    assert mgr.list_backups("Blog") == [created[4], created[3]]
    for path in removed:
        assert not os.path.exists(path + META_SUFFIX)


def test_pruning_is_scoped_to_label(tmp_path):
    target = _mk_module(str(tmp_path))
    mgr = BackupManager(str(tmp_path / "backups"))
    blog = [mgr.create_backup(target, "Blog") for _ in range(3)]
    other = mgr.create_backup(target, "Blog-Extra")

    mgr.clean_old_backups("Blog", keep_count=1)
    assert len(mgr.list_backups("Blog")) == 1
    assert mgr.list_backups("Blog-Extra") == [other]
    assert len([p for p in blog if os.path.isdir(p)]) == 1


def test_restore_backup_replaces_target(tmp_path):
    target = _mk_module(str(tmp_path), marker="original")
    mgr = BackupManager(str(tmp_path / "backups"))
    backup = mgr.create_backup(target, "Blog")

    with open(os.path.join(target, "BlogModule.php"), "w", encoding="utf-8") as f:
        f.write("<?php // broken\n")
    with open(os.path.join(target, "stray.txt"), "w", encoding="utf-8") as f:
        f.write("left over\n")

    mgr.restore_backup(backup, target)
    with open(os.path.join(target, "BlogModule.php"), "r", encoding="utf-8") as f:
        assert f.read() == "<?php // original\n"
    assert not os.path.exists(os.path.join(target, "stray.txt"))
    assert not [n for n in os.listdir(os.path.dirname(target)) if n.startswith(".restoring-")]


def test_restore_missing_backup_fails(tmp_path):
    mgr = BackupManager(str(tmp_path / "backups"))
    with pytest.raises(ModuleError):
        mgr.restore_backup(str(tmp_path / "backups" / "gone"), str(tmp_path / "target"))
