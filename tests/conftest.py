"""
Shared test fixtures for infraprobe tests.

This module provides common fixtures used across all test types:
- A clean retry configuration and stage environment per test
"""

import pytest

from infraprobe.retry_config import reset_retry_config

# ============================================================================
# ENVIRONMENT FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def clean_retry_config(monkeypatch):
    """Drop retry overrides from the environment and the cached global config."""
    monkeypatch.delenv("INFRAPROBE_RETRY_SSH_MAX_ATTEMPTS", raising=False)
    monkeypatch.delenv("INFRAPROBE_RETRY_SSH_DELAY", raising=False)
    reset_retry_config()
    yield
    reset_retry_config()


@pytest.fixture
def no_skip_env(monkeypatch):
    """Run with every stage enabled regardless of the caller's SKIP_ variables."""
    for stage in ("setup", "validate", "teardown"):
        monkeypatch.delenv(f"SKIP_{stage}", raising=False)

