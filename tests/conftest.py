"""Pytest fixtures for migrator tests."""

import os

import pytest


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep MIGRATOR_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("MIGRATOR_"):
            monkeypatch.delenv(key, raising=False)
    yield
