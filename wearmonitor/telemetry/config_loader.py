"""Load, validate, and hot-reload the telemetry configuration.

The config lives in ``telemetry_config.yaml`` alongside this module.  It is
loaded once and cached.  Call ``reload_telemetry_config()`` to re-read it from
disk without a restart.

Usage::

    from wearmonitor.telemetry.config_loader import get_telemetry_config

    config = get_telemetry_config()
    spec = config.exercise.session_spec()
    window = config.sleep.live_lookback           # timedelta(hours=24)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

import yaml

from wearmonitor.telemetry.base import MetricType, PassiveListenerConfig, SessionSpec

logger = logging.getLogger("wearmonitor.telemetry.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "telemetry_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class ExerciseConfig:
    """Exercise session settings handed to prepare/activate."""

    exercise_type: str
    metric_types: list[MetricType]
    auto_pause: bool = False
    gps_enabled: bool = False

    def session_spec(self) -> SessionSpec:
        return SessionSpec(
            exercise_type=self.exercise_type,
            metric_types=frozenset(self.metric_types),
            auto_pause=self.auto_pause,
            gps_enabled=self.gps_enabled,
        )


@dataclass
class SleepConfig:
    """Sleep lookback windows."""

    live_lookback_hours: int = 24
    history_lookback_days: int = 3

    @property
    def live_lookback(self) -> timedelta:
        return timedelta(hours=self.live_lookback_hours)

    @property
    def history_lookback(self) -> timedelta:
        return timedelta(days=self.history_lookback_days)


@dataclass
class PassiveConfig:
    user_activity_info_requested: bool = True

    def listener_config(self) -> PassiveListenerConfig:
        return PassiveListenerConfig(
            user_activity_info_requested=self.user_activity_info_requested
        )


@dataclass
class TelemetryConfig:
    """Complete, validated telemetry configuration.

    Attributes:
        version:  Config schema version string.
        exercise: Session type and streamed metrics.
        sleep:    Lookback windows for live and historical sleep queries.
        passive:  Passive activity listener options.
    """

    version: str
    exercise: ExerciseConfig
    sleep: SleepConfig
    passive: PassiveConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when telemetry_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Telemetry config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _positive_int(value: object, name: str, errors: list[str], default: int) -> int:
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        errors.append(f"{name} must be an integer, got {value!r}")
        return default
    if number < 1:
        errors.append(f"{name} must be >= 1, got {number}")
    return number


def _validate_and_build(raw: dict) -> TelemetryConfig:
    """Validate the raw YAML dict and construct a TelemetryConfig.

    All problems are collected and reported together.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Exercise ──
    ex_raw = raw.get("exercise") or {}
    exercise_type = ex_raw.get("exercise_type")
    if not exercise_type:
        errors.append("exercise.exercise_type is missing or empty")

    metric_types: list[MetricType] = []
    for name in ex_raw.get("metric_types") or []:
        try:
            metric_types.append(MetricType(name))
        except ValueError:
            errors.append(f"exercise.metric_types: unknown metric type {name!r}")
    if not metric_types:
        errors.append("exercise.metric_types must list at least one metric type")

    exercise = ExerciseConfig(
        exercise_type=str(exercise_type or ""),
        metric_types=metric_types,
        auto_pause=bool(ex_raw.get("auto_pause", False)),
        gps_enabled=bool(ex_raw.get("gps_enabled", False)),
    )

    # ── Sleep ──
    sl_raw = raw.get("sleep") or {}
    sleep = SleepConfig(
        live_lookback_hours=_positive_int(
            sl_raw.get("live_lookback_hours", 24), "sleep.live_lookback_hours", errors, 24
        ),
        history_lookback_days=_positive_int(
            sl_raw.get("history_lookback_days", 3), "sleep.history_lookback_days", errors, 3
        ),
    )

    # ── Passive ──
    pa_raw = raw.get("passive") or {}
    passive = PassiveConfig(
        user_activity_info_requested=bool(pa_raw.get("user_activity_info_requested", True)),
    )

    if errors:
        raise ConfigValidationError(
            f"telemetry_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return TelemetryConfig(
        version=version,
        exercise=exercise,
        sleep=sleep,
        passive=passive,
        _raw=raw,
    )


def load_telemetry_config(path: Path | None = None) -> TelemetryConfig:
    """Load and validate the telemetry config from disk.

    Args:
        path: Override path to YAML. Uses the bundled telemetry_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded telemetry config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: TelemetryConfig | None = None
_config_lock = threading.Lock()


def get_telemetry_config() -> TelemetryConfig:
    """Return the global TelemetryConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_telemetry_config()
    return _config


def reload_telemetry_config(path: Path | None = None) -> TelemetryConfig:
    """Reload the config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_telemetry_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded telemetry config: %s → %s", old_version, new_config.version)
    return new_config
