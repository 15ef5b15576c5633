"""Shared fixtures for telemetry core tests."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from wearmonitor.telemetry.base import (
    ActiveDurationCheckpoint,
    ExerciseMetricsFrame,
    MeasurementSource,
    SessionInfo,
)
from wearmonitor.telemetry.config_loader import TelemetryConfig, load_telemetry_config
from wearmonitor.telemetry.sources import (
    InMemoryRecordSource,
    SimulatedMeasurementSource,
    SimulatedPassiveSource,
)

# Fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Canonical "now" for every clock-driven test: the morning after the fixture night.
TEST_NOW = datetime(2026, 2, 23, 9, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = TEST_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


def make_frame(
    checkpoint_seconds: float | None = None, at: datetime = TEST_NOW, **values: float | None
) -> ExerciseMetricsFrame:
    """Frame with samples named after MetricType values and an optional checkpoint."""
    checkpoint = None
    if checkpoint_seconds is not None:
        checkpoint = ActiveDurationCheckpoint(
            active_duration=timedelta(seconds=checkpoint_seconds), time=at
        )
    return ExerciseMetricsFrame.of(timestamp=at, checkpoint=checkpoint, **values)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def telemetry_config() -> TelemetryConfig:
    """Load the real telemetry config for tests."""
    return load_telemetry_config()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


# ---------------------------------------------------------------------------
# JSON fixture loaders
# ---------------------------------------------------------------------------


@pytest.fixture
def sleep_records_raw() -> list[dict]:
    return json.loads((FIXTURES_DIR / "sleep_records.json").read_text())


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


@pytest.fixture
def measurement_source(clock: FixedClock) -> SimulatedMeasurementSource:
    """Simulated source without a ticker: frames only arrive through emit()."""
    return SimulatedMeasurementSource(tick_seconds=None, clock=clock, seed=7)


@pytest.fixture
def passive_source() -> SimulatedPassiveSource:
    return SimulatedPassiveSource()


@pytest.fixture
def record_source(sleep_records_raw: list[dict]) -> InMemoryRecordSource:
    source = InMemoryRecordSource()
    for record in sleep_records_raw:
        source.insert(record)
    return source


@pytest.fixture
def mock_measurement_source() -> MagicMock:
    """Mock MeasurementSource with no session running and every call succeeding."""
    source = MagicMock(spec=MeasurementSource)
    source.get_current_session_info = AsyncMock(return_value=SessionInfo(active=False))
    source.prepare = AsyncMock(return_value=None)
    source.activate = AsyncMock(return_value=None)
    source.end = AsyncMock(return_value=None)
    source.register_callback = MagicMock()
    source.unregister_callback = MagicMock()
    return source
