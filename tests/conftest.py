"""Pytest configuration and common fixtures."""

import os
import sys
import warnings
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest


def pytest_configure(config):
    """Configure pytest environment before tests run."""
    # Suppress async mock warnings
    warnings.filterwarnings("ignore", message="coroutine.*was never awaited")
    warnings.filterwarnings("ignore", category=pytest.PytestUnraisableExceptionWarning)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep SELFHEAL_ environment variables from leaking into settings."""
    for key in list(os.environ):
        if key.startswith("SELFHEAL_"):
            monkeypatch.delenv(key, raising=False)
