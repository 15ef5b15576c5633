"""Fixtures for API tests: an app wired to simulated sources."""

from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from wearmonitor.config import get_settings
from wearmonitor.main import create_app


@pytest.fixture(autouse=True)
def settings_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Deterministic settings: no generated frames, development environment."""
    monkeypatch.setenv("WEARMONITOR_SIMULATED_TICK_SECONDS", "0")
    monkeypatch.setenv("WEARMONITOR_ENVIRONMENT", "development")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(create_app()) as test_client:
        yield test_client
