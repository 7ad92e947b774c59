"""Pytest configuration and fixtures for infraprobe tests.

CRITICAL: Protects the user's configuration from test modifications.
"""

import os
import shutil
from pathlib import Path

import pytest


@pytest.fixture(scope="session", autouse=True)
def protect_production_config():
    """Protect ~/.infraprobe/config.toml from being modified by tests.

    Backs up the real config.toml before any tests run and restores it
    after all tests complete.
    """
    config_path = Path.home() / ".infraprobe" / "config.toml"
    backup_path = Path.home() / ".infraprobe" / ".config.toml.pytest-backup"

    config_existed = config_path.exists()
    if config_existed:
        shutil.copy2(config_path, backup_path)
        print(f"\n[PYTEST] Protected config.toml - backup at {backup_path}")

    yield

    if config_existed and backup_path.exists():
        shutil.copy2(backup_path, config_path)
        backup_path.unlink()
        print("\n[PYTEST] Restored config.toml from backup")
    elif backup_path.exists():
        backup_path.unlink()


@pytest.fixture(scope="session", autouse=True)
def prevent_real_aws_operations():
    """Mark test mode so nothing provisions real AWS resources by accident.

    aws_keypair refuses to build a real EC2 client while INFRAPROBE_TEST_MODE
    is set. Tests that need real AWS must run with RUN_E2E_TESTS=true.
    """
    os.environ["INFRAPROBE_TEST_MODE"] = "true"

    if os.environ.get("RUN_E2E_TESTS") == "true":
        print("\n" + "=" * 70)
        print("WARNING: RUN_E2E_TESTS=true - E2E tests will use REAL AWS resources!")
        print("=" * 70 + "\n")

    yield

    if "INFRAPROBE_TEST_MODE" in os.environ:
        del os.environ["INFRAPROBE_TEST_MODE"]


@pytest.fixture
def isolated_config(tmp_path):
    """Provide an isolated config directory for tests.

    Use this fixture instead of modifying ~/.infraprobe/config.toml.
    """
    config_dir = tmp_path / ".infraprobe"
    config_dir.mkdir(parents=True)
    return config_dir


@pytest.fixture
def mock_config_path(isolated_config, monkeypatch):
    """Point ConfigManager's default location at the isolated config dir.

    Example:
        def test_something(mock_config_path):
            ConfigManager.save_config(config)  # writes under tmp_path
    """
    config_file = isolated_config / "config.toml"

    from infraprobe.config_manager import ConfigManager

    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_DIR", isolated_config)
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", config_file)

    return config_file
