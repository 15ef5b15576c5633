"""In-process simulated collaborators.

Lets the service (and the test-suite) run without a watch or phone:

    SimulatedMeasurementSource — session API with a timed generator of running frames
    SimulatedPassiveSource     — passive activity monitor driven by ``push()`` and the
                                 debug activity endpoint
    InMemoryRecordSource       — historical record store with a debug-night helper
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from wearmonitor.telemetry.base import (
    ActiveDurationCheckpoint,
    Availability,
    ExerciseMetricsFrame,
    HistoricalRecordSource,
    MeasurementSource,
    MetricsCallback,
    PassiveListenerConfig,
    PassiveStateCallback,
    PassiveStateSource,
    SessionInfo,
    SessionSpec,
    utc_now,
)
from wearmonitor.telemetry.errors import NoActiveSession
from wearmonitor.telemetry.sleep_summary import SLEEP_SESSION_RECORD

logger = logging.getLogger("wearmonitor.telemetry.sources.simulated")


class SimulatedMeasurementSource(MeasurementSource):
    """Exercise session source backed by a random-walk runner.

    Args:
        tick_seconds: Interval between generated frames once a session is
                      active.  None disables the generator; frames are then
                      only delivered through ``emit()``.
        clock:        Returns the current UTC time.
        seed:         Seed for reproducible readings.
    """

    def __init__(
        self,
        tick_seconds: float | None = None,
        clock: Callable[[], datetime] = utc_now,
        seed: int | None = None,
    ) -> None:
        self._tick_seconds = tick_seconds
        self._clock = clock
        self._rng = random.Random(seed)
        self._callbacks: list[MetricsCallback] = []
        self._session: SessionSpec | None = None
        self._started_at: datetime | None = None
        self._ticker: asyncio.Task[None] | None = None
        self._heart_rate = 110.0

    @property
    def active_spec(self) -> SessionSpec | None:
        return self._session

    @property
    def callback_count(self) -> int:
        return len(self._callbacks)

    async def prepare(self, spec: SessionSpec) -> None:
        if self._session is not None:
            raise RuntimeError("Cannot prepare while a session is active")
        for metric_type in sorted(spec.metric_types, key=lambda m: m.value):
            for callback in list(self._callbacks):
                callback.on_availability_changed(metric_type, Availability.ACQUIRING)
        logger.debug("Prepared %s session", spec.exercise_type)

    async def activate(self, spec: SessionSpec) -> None:
        if self._session is not None:
            raise RuntimeError("A session is already active")
        self._session = spec
        self._started_at = self._clock()
        for metric_type in sorted(spec.metric_types, key=lambda m: m.value):
            for callback in list(self._callbacks):
                callback.on_availability_changed(metric_type, Availability.AVAILABLE)
        if self._tick_seconds:
            self._ticker = asyncio.create_task(self._tick_loop(self._tick_seconds))
        logger.info("Simulated %s session active", spec.exercise_type)

    def register_callback(self, callback: MetricsCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)
        callback.on_registered()

    def unregister_callback(self, callback: MetricsCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def get_current_session_info(self) -> SessionInfo:
        if self._session is None:
            return SessionInfo(active=False)
        return SessionInfo(active=True, exercise_type=self._session.exercise_type)

    async def end(self) -> None:
        if self._session is None:
            raise NoActiveSession("No exercise session in progress")
        await self._cancel_ticker()
        logger.info("Simulated %s session ended", self._session.exercise_type)
        self._session = None
        self._started_at = None

    # ------------------------------------------------------------------
    # Frame generation
    # ------------------------------------------------------------------

    def emit(self, frame: ExerciseMetricsFrame) -> None:
        """Deliver ``frame`` to every registered callback."""
        for callback in list(self._callbacks):
            callback.on_frame(frame)

    def next_frame(self) -> ExerciseMetricsFrame:
        """Generate one plausible running frame for the active session."""
        now = self._clock()
        self._heart_rate = min(185.0, max(95.0, self._heart_rate + self._rng.uniform(-3, 4)))
        speed = self._rng.uniform(2.6, 3.4)
        cadence = self._rng.uniform(158, 176)
        steps = int(cadence / 60 * (self._tick_seconds or 1))
        checkpoint = None
        if self._started_at is not None:
            checkpoint = ActiveDurationCheckpoint(
                active_duration=now - self._started_at, time=now
            )
        return ExerciseMetricsFrame.of(
            timestamp=now,
            checkpoint=checkpoint,
            heart_rate=round(self._heart_rate, 1),
            steps=steps,
            steps_per_minute=round(cadence),
            speed=round(speed, 2),
            pace=round(1_000_000 / speed),
            distance=round(speed * (self._tick_seconds or 1), 2),
            calories=round(self._rng.uniform(0.1, 0.3), 3),
            elevation_gain=round(self._rng.choice([0.0, 0.0, 0.0, 0.4]), 1),
            floors=None,
        )

    async def _tick_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.emit(self.next_frame())

    async def _cancel_ticker(self) -> None:
        ticker, self._ticker = self._ticker, None
        if ticker is None:
            return
        ticker.cancel()
        try:
            await ticker
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        await self._cancel_ticker()


class SimulatedPassiveSource(PassiveStateSource):
    """Passive monitor whose states arrive through ``push()``.

    The API exposes it outside production as ``POST /telemetry/activity/debug-state``.
    """

    def __init__(self) -> None:
        self._callback: PassiveStateCallback | None = None
        self.config: PassiveListenerConfig | None = None

    @property
    def has_listener(self) -> bool:
        return self._callback is not None

    def set_listener(
        self, config: PassiveListenerConfig, callback: PassiveStateCallback
    ) -> None:
        self.config = config
        self._callback = callback

    def clear_listener(self) -> None:
        self._callback = None

    def push(self, raw_state: Any) -> None:
        """Deliver a raw classification to the installed listener, if any."""
        if self._callback is None:
            logger.debug("Passive state %r dropped: no listener", raw_state)
            return
        self._callback.on_state_received(raw_state)


class InMemoryRecordSource(HistoricalRecordSource):
    """Record store held in memory, keyed by record type.

    Args:
        available: Value reported by ``is_available()``; False mimics a
                   device without the health record SDK.
    """

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self._records: dict[str, list[dict[str, Any]]] = {}

    def insert(self, record: dict[str, Any], record_type: str = SLEEP_SESSION_RECORD) -> None:
        self._records.setdefault(record_type, []).append(record)

    async def is_available(self) -> bool:
        return self.available

    async def query(
        self, record_type: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        matches = []
        for record in self._records.get(record_type, []):
            rec_start = _as_datetime(record["start_time"])
            rec_end = _as_datetime(record["end_time"])
            if rec_end >= start and rec_start <= end:
                matches.append(record)
        return matches

    def insert_fake_sleep_session(self, now: datetime | None = None) -> dict[str, Any]:
        """Insert an 8-hour debug night ending at the top of the current hour.

        Three hours of light sleep followed by five hours of deep sleep.
        """
        end = (now or utc_now()).replace(minute=0, second=0, microsecond=0)
        start = end - timedelta(hours=8)
        split = start + timedelta(hours=3)
        record = {
            "id": str(uuid.uuid4()),
            "start_time": start.isoformat(),
            "end_time": end.isoformat(),
            "title": "Debug sleep",
            "notes": "Inserted by WearMonitor debug",
            "stages": [
                {"start_time": start.isoformat(), "end_time": split.isoformat(), "stage": 4},
                {"start_time": split.isoformat(), "end_time": end.isoformat(), "stage": 5},
            ],
        }
        self.insert(record)
        logger.info("Inserted debug sleep session %s (%s → %s)", record["id"], start, end)
        return record


def _as_datetime(value: Any) -> datetime:
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(
        str(value).replace("Z", "+00:00")
    )
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)
