"""Pytest bootstrap for backend test runs.

Environment defaults are set here, before anything imports
aslan_crm.core.config, so the settings singleton is built for tests:
a local SQLite file and no Redis cache.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_automation.db")
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("TESTING", "true")

import pytest

from aslan_crm.core.config import settings


@pytest.fixture(scope="session", autouse=True)
def force_testing_mode():
    """Force TESTING=True early in the test session so imports can read it."""
    settings.TESTING = True

