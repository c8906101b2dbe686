"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the environment before settings are imported so tests never load
a local .env file or try to reach a real Redis server.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_LIMIT", "10")
os.environ.setdefault("RATE_LIMIT_WINDOW_SECONDS", "60")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from sliding_limiter.core import rate_limit as rate_limit_module


@pytest.fixture
def fresh_limiter(monkeypatch):
    """Drop the cached process-wide limiter so each test starts with an empty store."""
    monkeypatch.setattr(rate_limit_module, "_limiter", None)
    monkeypatch.setattr(rate_limit_module, "_limiter_config", None)
    yield
