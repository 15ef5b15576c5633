"""Fold exercise frames into running totals and latest gauge readings.

DELTA metrics (steps, calories, distance, elevation gain, floors) are summed
into ``CumulativeTotals`` and the *new total* is emitted.  Every delta sample in
a frame counts, including several of the same type.  Fractional steps carry
over until they add up to a whole step.

GAUGE metrics (heart rate, cadence, speed, pace) are passed through verbatim.
Metrics absent from a frame are not emitted, so downstream values are never
reset by a sparse frame.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from wearmonitor.telemetry.base import (
    ExerciseMetricsFrame,
    MetricSample,
    MetricType,
    utc_now,
)

logger = logging.getLogger("wearmonitor.telemetry.aggregator")


@dataclass(frozen=True)
class CumulativeTotals:
    """Running sums for one session lifetime.  Never decremented."""

    steps: int = 0
    calories_kcal: float = 0.0
    distance_m: float = 0.0
    elevation_gain_m: float = 0.0
    floors: float = 0.0


# Metric → (snapshot field, CumulativeTotals field or None for gauges)
_FIELD_MAP: dict[MetricType, tuple[str, str | None]] = {
    MetricType.HEART_RATE: ("heart_rate_bpm", None),
    MetricType.STEPS_PER_MINUTE: ("cadence_spm", None),
    MetricType.SPEED: ("speed_mps", None),
    MetricType.PACE: ("pace_ms_per_km", None),
    MetricType.STEPS: ("steps", "steps"),
    MetricType.CALORIES: ("calories_kcal", "calories_kcal"),
    MetricType.DISTANCE: ("distance_m", "distance_m"),
    MetricType.ELEVATION_GAIN: ("elevation_gain_m", "elevation_gain_m"),
    MetricType.FLOORS: ("floors", "floors"),
}


class DeltaAggregator:
    """Single-writer fold over exercise frames.

    ``fold()`` returns only the snapshot fields the frame actually changed,
    ready to be merged into the published state::

        aggregator = DeltaAggregator()
        changes = aggregator.fold(frame)     # {'steps': 1240, 'heart_rate_bpm': 151.0}
        store.merge(**changes)
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._totals = CumulativeTotals()
        # Fractional steps not yet published as a whole step.
        self._step_fraction = 0.0

    @property
    def totals(self) -> CumulativeTotals:
        return self._totals

    def reset(self) -> None:
        """Zero the totals.  Only called on a fresh (non-reused) session start."""
        logger.info("Cumulative totals reset")
        self._totals = CumulativeTotals()
        self._step_fraction = 0.0

    def seed(self, totals: CumulativeTotals) -> None:
        """Continue summing from ``totals``, e.g. when adopting a running session."""
        logger.info("Cumulative totals resumed at %s", totals)
        self._totals = totals
        self._step_fraction = 0.0

    def fold(self, frame: ExerciseMetricsFrame, now: datetime | None = None) -> dict[str, Any]:
        """Apply one frame and return the changed snapshot fields.

        Args:
            frame: Next frame in arrival order.
            now:   Evaluation time for the active-duration checkpoint.
                   Defaults to the aggregator clock.

        Returns:
            Dict of snapshot field → new value.  Empty for an empty frame.
        """
        changes: dict[str, Any] = {}
        totals = self._totals

        for metric_type, (field_name, total_field) in _FIELD_MAP.items():
            if total_field is None:
                sample = frame.latest(metric_type)
                if sample is None:
                    continue
                if not math.isfinite(sample.value):
                    logger.warning(
                        "Dropping non-finite %s sample: %r", metric_type.value, sample.value
                    )
                    continue
                self._check_kind(metric_type, sample)
                changes[field_name] = sample.value
                continue

            increment = 0.0
            accepted = False
            for sample in frame.samples_of(metric_type):
                value = sample.value
                if not math.isfinite(value):
                    logger.warning("Dropping non-finite %s sample: %r", metric_type.value, value)
                    continue
                if value < 0:
                    logger.warning("Dropping negative %s delta: %r", metric_type.value, value)
                    continue
                self._check_kind(metric_type, sample)
                increment += value
                accepted = True
            if not accepted:
                continue

            if total_field == "steps":
                self._step_fraction += increment
                whole = int(self._step_fraction)
                self._step_fraction -= whole
                new_total = totals.steps + whole
            else:
                new_total = getattr(totals, total_field) + increment
            totals = replace(totals, **{total_field: new_total})
            changes[field_name] = new_total

        self._totals = totals

        if frame.checkpoint is not None:
            changes["active_seconds"] = frame.checkpoint.active_seconds_at(now or self._clock())

        if changes:
            logger.debug("Folded frame → %s", changes)
        return changes

    @staticmethod
    def _check_kind(metric_type: MetricType, sample: MetricSample) -> None:
        if sample.kind is not metric_type.kind:
            logger.debug(
                "%s sample tagged %s; treating it as %s",
                metric_type.value, sample.kind, metric_type.kind.value,
            )
