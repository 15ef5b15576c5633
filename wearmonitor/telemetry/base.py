"""Canonical data models and collaborator interfaces for the telemetry core.

Every external source (exercise session SDK, passive activity monitor,
historical record store) is reached through one of the abstract classes at the
bottom of this module.  The dataclasses above them are the single vocabulary
shared by the session controller, the aggregator, the state store and the API
layer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger("wearmonitor.telemetry")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MetricKind(str, Enum):
    """How a sample relates to the previous one.

    DELTA  — increment accrued since the previous emission (steps, calories).
    GAUGE  — instantaneous absolute reading (heart rate, speed).
    """

    DELTA = "delta"
    GAUGE = "gauge"


class MetricType(str, Enum):
    """Metric types an exercise session can stream."""

    HEART_RATE = "heart_rate"
    STEPS = "steps"
    STEPS_PER_MINUTE = "steps_per_minute"
    CALORIES = "calories"
    DISTANCE = "distance"
    SPEED = "speed"
    PACE = "pace"
    ELEVATION_GAIN = "elevation_gain"
    FLOORS = "floors"

    @property
    def kind(self) -> MetricKind:
        return METRIC_KINDS[self]


METRIC_KINDS: dict[MetricType, MetricKind] = {
    MetricType.HEART_RATE: MetricKind.GAUGE,
    MetricType.STEPS: MetricKind.DELTA,
    MetricType.STEPS_PER_MINUTE: MetricKind.GAUGE,
    MetricType.CALORIES: MetricKind.DELTA,
    MetricType.DISTANCE: MetricKind.DELTA,
    MetricType.SPEED: MetricKind.GAUGE,
    MetricType.PACE: MetricKind.GAUGE,
    MetricType.ELEVATION_GAIN: MetricKind.DELTA,
    MetricType.FLOORS: MetricKind.DELTA,
}


class SessionState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    ACTIVE = "active"
    ENDING = "ending"


class Availability(str, Enum):
    """Per-metric availability as reported by the measurement source."""

    AVAILABLE = "available"
    ACQUIRING = "acquiring"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class ActivityState(str, Enum):
    """Coarse user state from the passive monitor.  Values are display labels."""

    ASLEEP = "Asleep"
    AWAKE = "Awake"
    EXERCISING = "Exercising"
    UNKNOWN = "Unknown"


class SleepStage(str, Enum):
    DEEP = "deep"
    LIGHT = "light"
    REM = "rem"
    AWAKE = "awake"


# ---------------------------------------------------------------------------
# Exercise measurements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricSample:
    """One timestamped scalar reading.

    Attributes:
        metric_type: Which metric this sample carries.
        value:       Increment (DELTA) or absolute reading (GAUGE).
        timestamp:   UTC time the source attributes to the sample.
        kind:        DELTA or GAUGE; defaults to the metric type's kind.
    """

    metric_type: MetricType
    value: float
    timestamp: datetime = field(default_factory=utc_now)
    kind: MetricKind | None = None

    def __post_init__(self) -> None:
        if self.kind is None:
            object.__setattr__(self, "kind", self.metric_type.kind)


@dataclass(frozen=True)
class ActiveDurationCheckpoint:
    """Accumulated active time recorded at a given instant.

    Attributes:
        active_duration: Active (non-paused) time accumulated up to ``time``.
        time:            UTC instant the checkpoint was taken.
    """

    active_duration: timedelta
    time: datetime

    def active_seconds_at(self, now: datetime) -> int:
        """Return whole active seconds at ``now`` (checkpoint + wall-clock elapsed)."""
        elapsed = max(now - self.time, timedelta(0))
        return int((self.active_duration + elapsed).total_seconds())


@dataclass(frozen=True)
class ExerciseMetricsFrame:
    """A bundle of samples delivered atomically by one update tick.

    Every metric is independently optional.  A frame without samples and
    without a checkpoint is valid and changes nothing downstream.

    Attributes:
        samples:     Samples in source order.  Several samples of the same type
                     may be present.  For a gauge the last one is the
                     current reading; delta samples are all increments.
        checkpoint:  Active-duration checkpoint, when the source provides one.
        received_at: UTC time the frame was delivered.
    """

    samples: tuple[MetricSample, ...] = ()
    checkpoint: ActiveDurationCheckpoint | None = None
    received_at: datetime = field(default_factory=utc_now)

    @classmethod
    def of(
        cls,
        timestamp: datetime | None = None,
        checkpoint: ActiveDurationCheckpoint | None = None,
        **values: float | None,
    ) -> ExerciseMetricsFrame:
        """Build a frame from keyword values named after ``MetricType`` values.

        ``None`` values are skipped, so callers can pass sparse readings directly::

            ExerciseMetricsFrame.of(heart_rate=142.0, steps=12, pace=None)
        """
        ts = timestamp or utc_now()
        samples = tuple(
            MetricSample(MetricType(name), float(value), ts)
            for name, value in values.items()
            if value is not None
        )
        return cls(samples=samples, checkpoint=checkpoint, received_at=ts)

    def samples_of(self, metric_type: MetricType) -> list[MetricSample]:
        """Return every sample of ``metric_type`` in source order."""
        return [s for s in self.samples if s.metric_type is metric_type]

    def latest(self, metric_type: MetricType) -> MetricSample | None:
        """Return the last sample of ``metric_type`` in this frame, or None."""
        for sample in reversed(self.samples):
            if sample.metric_type is metric_type:
                return sample
        return None

    @property
    def is_empty(self) -> bool:
        return not self.samples and self.checkpoint is None


# ---------------------------------------------------------------------------
# Session descriptors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionSpec:
    """What the controller asks the source to prepare and activate.

    Attributes:
        exercise_type: Exercise type slug (e.g. 'running').
        metric_types:  Metrics the session must stream.
        auto_pause:    Whether the source may auto pause/resume.
        gps_enabled:   Whether location is used for distance/speed.
    """

    exercise_type: str
    metric_types: frozenset[MetricType]
    auto_pause: bool = False
    gps_enabled: bool = False


@dataclass(frozen=True)
class SessionInfo:
    """Session status reported by the measurement source.

    Attributes:
        active:        True when a session is currently running on the source.
        exercise_type: Type of the running session, if any.
    """

    active: bool = False
    exercise_type: str | None = None


@dataclass(frozen=True)
class PassiveListenerConfig:
    user_activity_info_requested: bool = True


# ---------------------------------------------------------------------------
# Sleep
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SleepStageInterval:
    """A single staged slice of a sleep session.

    ``stage`` is a ``SleepStage`` when recognized; unmapped source tags are
    kept verbatim as strings so the summary step can decide how to bucket them.
    """

    start: datetime
    end: datetime
    stage: SleepStage | str


@dataclass(frozen=True)
class SleepSession:
    """Normalized historical sleep session.

    Attributes:
        session_id: Identifier assigned by the record store.
        start:      UTC start of the session.
        end:        UTC end of the session.
        title:      Optional user/device supplied title.
        stages:     Stage intervals sorted by start time.
    """

    session_id: str
    start: datetime
    end: datetime
    title: str | None = None
    stages: tuple[SleepStageInterval, ...] = ()


@dataclass(frozen=True)
class SleepPercentages:
    deep: int
    light: int
    rem: int
    awake: int


@dataclass(frozen=True)
class SleepSummary:
    """Per-stage minute totals for one sleep session.

    ``total_minutes`` is floored at 1 so percentage maths never divides by zero.
    """

    total_minutes: int
    deep_minutes: int = 0
    light_minutes: int = 0
    rem_minutes: int = 0
    awake_minutes: int = 0

    def percentages(self) -> SleepPercentages:
        """Integer-truncated stage percentages.

        The four values need not add up to 100; truncation is kept as is.
        """
        total = max(1, self.total_minutes)
        return SleepPercentages(
            deep=self.deep_minutes * 100 // total,
            light=self.light_minutes * 100 // total,
            rem=self.rem_minutes * 100 // total,
            awake=self.awake_minutes * 100 // total,
        )

    @property
    def total_hours_label(self) -> str:
        return f"{self.total_minutes / 60:.1f}h"


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------


class MetricsCallback(ABC):
    """Receiver registered with a ``MeasurementSource``."""

    @abstractmethod
    def on_frame(self, frame: ExerciseMetricsFrame) -> None:
        """Called for every update tick, in source order."""

    def on_availability_changed(
        self, metric_type: MetricType, availability: Availability
    ) -> None:
        """Called when a metric becomes (un)available.  Default ignores it."""

    def on_registered(self) -> None:
        """Called once the source accepted the registration."""

    def on_registration_failed(self, error: BaseException) -> None:
        """Called when the source rejected the registration."""


class MeasurementSource(ABC):
    """Exercise session SDK surface consumed by the ``SessionController``.

    Subclasses must implement all methods.  ``end()`` raises
    ``NoActiveSession`` when there is nothing to end.
    """

    @abstractmethod
    async def prepare(self, spec: SessionSpec) -> None:
        """Warm up sensors for ``spec``."""

    @abstractmethod
    async def activate(self, spec: SessionSpec) -> None:
        """Start the session described by ``spec``."""

    @abstractmethod
    def register_callback(self, callback: MetricsCallback) -> None:
        """Attach ``callback`` to the update stream."""

    @abstractmethod
    def unregister_callback(self, callback: MetricsCallback) -> None:
        """Detach ``callback``.  Detaching an unknown callback is a no-op."""

    @abstractmethod
    async def get_current_session_info(self) -> SessionInfo:
        """Report whether a session is already running on the source."""

    @abstractmethod
    async def end(self) -> None:
        """End the running session."""


class PassiveStateCallback(ABC):
    @abstractmethod
    def on_state_received(self, raw_state: Any) -> None:
        """Called with the source's raw activity classification."""


class PassiveStateSource(ABC):
    """Always-on passive monitor that reports the user's activity state."""

    @abstractmethod
    def set_listener(
        self, config: PassiveListenerConfig, callback: PassiveStateCallback
    ) -> None:
        """Install ``callback``, replacing any previous one."""

    @abstractmethod
    def clear_listener(self) -> None:
        """Remove the installed callback, if any."""


class HistoricalRecordSource(ABC):
    """Read access to stored health records (e.g. sleep sessions)."""

    @abstractmethod
    async def query(
        self, record_type: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        """Return raw records of ``record_type`` overlapping [start, end].

        Args:
            record_type: Record type slug, e.g. 'sleep_session'.
            start:       Window start (UTC).
            end:         Window end (UTC).

        Returns:
            Raw record dicts in source order.
        """

    async def is_available(self) -> bool:
        """Return False when the store cannot be read (missing SDK, no permission).

        Override in sources that can detect this.  Default returns True.
        """
        return True
