"""WearMonitor telemetry core.

Turns three independent device feeds into one continuously updated snapshot:
exercise session frames, passive user-activity states, and historical sleep
session records.

Subpackages:
    sources/ — Simulated collaborators (measurement, passive, record sources)

Core modules:
    base               — Domain types and the collaborator ABCs
    errors             — TelemetryError taxonomy
    config_loader      — Load/validate/reload telemetry_config.yaml
    session_controller — Exercise session lifecycle and callback ownership
    delta_aggregator   — Fold frames into totals and latest gauges
    activity_tracker   — Passive activity state mapping
    sleep_summary      — Sleep stage summaries and last-night selection
    state_store        — Immutable snapshot and replay-latest broadcast
    monitor            — HealthMonitor facade
"""

from wearmonitor.telemetry.base import (
    ActivityState,
    ExerciseMetricsFrame,
    HistoricalRecordSource,
    MeasurementSource,
    MetricType,
    PassiveStateSource,
    SleepSummary,
)
from wearmonitor.telemetry.config_loader import TelemetryConfig, get_telemetry_config
from wearmonitor.telemetry.errors import (
    RegistrationFailed,
    SourceUnavailable,
    TelemetryError,
)
from wearmonitor.telemetry.monitor import HealthMonitor
from wearmonitor.telemetry.state_store import AggregateSnapshot, AggregateStateStore

__all__ = [
    "ActivityState",
    "AggregateSnapshot",
    "AggregateStateStore",
    "ExerciseMetricsFrame",
    "HealthMonitor",
    "HistoricalRecordSource",
    "MeasurementSource",
    "MetricType",
    "PassiveStateSource",
    "RegistrationFailed",
    "SleepSummary",
    "SourceUnavailable",
    "TelemetryConfig",
    "TelemetryError",
    "get_telemetry_config",
]
