from __future__ import annotations

import logging
import os

import pytest

from rites.core.backup.store import SnapshotStore
from rites.core.config.manager import ConfigManager
from rites.core.config.paths import RitesFsPaths
from rites.core.modules.contract import ModuleContext
from rites.core.modules.state import ModuleStateStore


@pytest.fixture
def home(tmp_path):
    d = tmp_path / "home"
    d.mkdir()
    return str(d)


@pytest.fixture
def modules_dir(tmp_path):
    d = tmp_path / "modules"
    d.mkdir()
    return str(d)


@pytest.fixture
def rites_fs(tmp_path):
    """
    Isolated state root (config/, state/, logs/) under tmp_path.
    """
    fs = RitesFsPaths(root=str(tmp_path / "root"))
    os.makedirs(fs.config_dir, exist_ok=True)
    return fs


@pytest.fixture
def config_manager(rites_fs, home, modules_dir):
    cm = ConfigManager(fs=rites_fs, logger=None, read_only=False)
    cm.load_all()
    cm.apply_overrides(
        {
            "paths": {"home": home, "modules_dir": modules_dir},
            "skip": {"read_env": False},
            "executor": {"step_timeout_seconds": 5},
        }
    )
    return cm


@pytest.fixture
def snapshot_store(tmp_path, home):
    return SnapshotStore(base_dir=str(tmp_path / "snapshots"), home=home, retention=3)


@pytest.fixture
def module_ctx(home, snapshot_store):
    return ModuleContext(home=home, snapshots=snapshot_store, snapshot_targets=["~/.bashrc"])


@pytest.fixture
def state_store():
    return ModuleStateStore()


@pytest.fixture(autouse=True)
def _detach_rites_log_handlers():
    """
    setup_logging() binds handlers once per process; drop them after each test so
    a later test never writes into an earlier test's tmp dir or captured stream.
    """
    yield
    lg = logging.getLogger("rites")
    for h in list(lg.handlers):
        lg.removeHandler(h)
        h.close()
