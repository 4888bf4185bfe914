"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

# Rich's module-level Console wraps at 80 columns when not on a TTY; long
# pytest tmp paths would otherwise split messages depending on the host.
os.environ.setdefault("COLUMNS", "1000")


@pytest.fixture
def cli_env(tmp_path: Path) -> dict[str, str]:
    """Environment that keeps CLI runs away from /etc and /var/log."""
    return {
        "PROVCTL_CONFIG_FILE": str(tmp_path / "config.yml"),
        "PROVCTL_LOGS_DIR": str(tmp_path / "logs"),
    }
