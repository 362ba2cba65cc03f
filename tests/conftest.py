from __future__ import annotations

import logging
import sys

import pytest

from wkpm.core.config.manager import ConfigManager
from wkpm.core.config.models import InstallerSettings
from wkpm.core.config.paths import WorkspacePaths


@pytest.fixture
def workspace(tmp_path):
    """
    An isolated application root: app-platform/, bootstrap/ and .webkernel/
    all live under tmp_path.
    """
    return WorkspacePaths(root=str(tmp_path))


@pytest.fixture
def config_manager(workspace):
    return ConfigManager(paths=workspace, logger=logging.getLogger("wkpm.tests"))


@pytest.fixture
def settings():
    # hooks run through the test interpreter; composer is never invoked
    return InstallerSettings(
        lock_timeout_seconds=5,
        lock_poll_interval_seconds=0.02,
        hook_interpreter=[sys.executable],
        hook_timeout_seconds=20,
        dump_autoload=False,
        backup_keep_count=3,
    )
