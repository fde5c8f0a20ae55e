"""Pytest configuration shared by every suite.

What:
  Put ``imapcore/src`` on ``sys.path`` and keep global configuration and log
  level state deterministic between tests.

Why:
  Tests must import the source tree rather than an installed wheel, and the
  configuration cache plus log threshold are module-level state that would
  otherwise leak across tests.

How:
  Insert the source directory at import time, then let an autouse fixture
  clear ``IMAPCORE_CONFIG_PATH``, reset the configuration cache, and restore
  the ``INFO`` log threshold around each test.
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "imapcore" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest

from imapcore.config.loader import reset_client_config
from imapcore.utils.logging import set_log_level


@pytest.fixture(autouse=True)
def client_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Run every test from an empty directory with no configuration file."""

    monkeypatch.delenv("IMAPCORE_CONFIG_PATH", raising=False)
    monkeypatch.delenv("IMAPCORE_PASSWORD", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    reset_client_config()
    set_log_level("INFO")
    try:
        yield
    finally:
        reset_client_config()
        set_log_level("INFO")
