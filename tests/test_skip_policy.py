from __future__ import annotations

from rites.core.config.models import SkipConfig
from rites.core.modules.skip import SkipPolicy, env_flag_name


def test_env_flag_name_matches_shell_convention():
    assert env_flag_name("60-devtools") == "SKIP_60_DEVTOOLS"
    assert env_flag_name("10-backup") == "SKIP_10_BACKUP"


def test_per_module_override_and_patterns():
    pol = SkipPolicy(modules={"20-packages": True, "30-chezmoi": False}, patterns=["devtools", "secret"])
    assert pol.decide("20-packages").source == "config"
    assert pol.should_skip("30-chezmoi") is False
    assert pol.should_skip("60-devtools") is True
    assert pol.should_skip("50-secrets") is True
    assert pol.should_skip("00-prereqs") is False


def test_environment_adds_skips_but_never_removes_them():
    env = {"SKIP_10_BACKUP": "1", "SKIP_20_PACKAGES": "0", "SKIP_MODULES": "chez shell"}
    pol = SkipPolicy.from_config(SkipConfig(modules={"20-packages": True}), env=env)
    assert pol.decide("10-backup").source == "env"
    assert pol.should_skip("20-packages") is True
    assert pol.should_skip("30-chezmoi") is True
    assert pol.should_skip("40-shell") is True
    assert pol.should_skip("00-prereqs") is False


def test_environment_ignored_when_read_env_disabled():
    pol = SkipPolicy.from_config(SkipConfig(read_env=False), env={"SKIP_00_PREREQS": "1"})
    assert pol.should_skip("00-prereqs") is False


def test_patterns_accept_space_separated_string():
    cfg = SkipConfig(patterns="devtools  secrets")
    assert cfg.patterns == ["devtools", "secrets"]
    assert SkipPolicy.from_config(cfg, env={}).should_skip("60-devtools") is True


def test_os_environ_is_read_by_default(monkeypatch):
    monkeypatch.setenv("SKIP_MODULES", "backup")
    pol = SkipPolicy.from_config(SkipConfig())
    assert pol.should_skip("10-backup") is True
