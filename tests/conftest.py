"""
Pytest configuration and fixtures for steptrader tests.

This conftest.py provides shared fixtures for all tests.
"""
import pytest

from core.audit_log import AuditLogger
from tests.helpers import build_config


@pytest.fixture(autouse=True)
def isolate_log_dir(monkeypatch):
    """TRADER_LOG_DIR overrides log_dir; make sure a developer's env never leaks in."""
    monkeypatch.delenv("TRADER_LOG_DIR", raising=False)


@pytest.fixture
def config():
    return build_config()


@pytest.fixture
def audit(tmp_path):
    return AuditLogger(log_dir=str(tmp_path / "audit"), tz_name="UTC")
