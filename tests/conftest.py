"""Shared pytest fixtures for the digest watcher tests."""

from __future__ import annotations

import os

import pytest
import structlog

from digest_watcher.config import get_settings


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch):
    """Drop WATCHER_* variables and the settings cache around every test."""
    for key in list(os.environ):
        if key.upper().startswith("WATCHER_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    structlog.reset_defaults()
