"""Passive user-activity tracking (asleep / awake / exercising).

Independent of the exercise session: the passive monitor keeps reporting while
no session runs.  The stream carries state, not deltas, so the tracker keeps
only the last value.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from wearmonitor.telemetry.base import (
    ActivityState,
    PassiveListenerConfig,
    PassiveStateCallback,
    PassiveStateSource,
)

logger = logging.getLogger("wearmonitor.telemetry.activity")

# Raw classification → canonical state.  Health Services reports integer codes
# (USER_ACTIVITY_*); simulated and imported sources send names or labels.
_ACTIVITY_STATE_MAP: dict[Any, ActivityState] = {
    0: ActivityState.UNKNOWN,
    1: ActivityState.EXERCISING,
    2: ActivityState.AWAKE,
    3: ActivityState.ASLEEP,
    "user_activity_unknown": ActivityState.UNKNOWN,
    "user_activity_exercise": ActivityState.EXERCISING,
    "user_activity_passive": ActivityState.AWAKE,
    "user_activity_asleep": ActivityState.ASLEEP,
    "unknown": ActivityState.UNKNOWN,
    "exercise": ActivityState.EXERCISING,
    "exercising": ActivityState.EXERCISING,
    "passive": ActivityState.AWAKE,
    "awake": ActivityState.AWAKE,
    "asleep": ActivityState.ASLEEP,
}


def map_activity_state(raw: Any) -> ActivityState:
    """Map a raw passive classification to ``ActivityState``.

    Anything unrecognized, including None, maps to ``ActivityState.UNKNOWN``.
    """
    if isinstance(raw, ActivityState):
        return raw
    if isinstance(raw, bool):
        return ActivityState.UNKNOWN
    if isinstance(raw, str):
        key: Any = raw.strip().lower()
    else:
        key = raw
    try:
        return _ACTIVITY_STATE_MAP.get(key, ActivityState.UNKNOWN)
    except TypeError:  # unhashable payload
        return ActivityState.UNKNOWN


class _TrackerCallback(PassiveStateCallback):
    def __init__(self, tracker: ActivityStateTracker) -> None:
        self._tracker = tracker

    def on_state_received(self, raw_state: Any) -> None:
        self._tracker._receive(raw_state)


class ActivityStateTracker:
    """Subscribes once to a passive source and republishes the mapped state.

    Args:
        source:    Passive state source.
        on_change: Sink receiving every mapped state (last write wins).
        config:    Listener options handed to the source.
    """

    def __init__(
        self,
        source: PassiveStateSource,
        on_change: Callable[[ActivityState], None] | None = None,
        config: PassiveListenerConfig | None = None,
    ) -> None:
        self._source = source
        self._on_change = on_change
        self._config = config or PassiveListenerConfig()
        self._callback: _TrackerCallback | None = None
        self._state = ActivityState.UNKNOWN

    @property
    def state(self) -> ActivityState:
        return self._state

    @property
    def is_monitoring(self) -> bool:
        return self._callback is not None

    def start_monitoring(self) -> None:
        if self._callback is not None:
            logger.debug("start_monitoring() called again, ignoring")
            return
        callback = _TrackerCallback(self)
        self._source.set_listener(self._config, callback)
        self._callback = callback
        logger.info("Started monitoring user activity")

    def stop_monitoring(self) -> None:
        """Clear the passive listener.  Safe to call when never started."""
        if self._callback is None:
            return
        self._callback = None
        try:
            self._source.clear_listener()
        except Exception:
            logger.warning("Failed to clear passive listener", exc_info=True)
            return
        logger.info("Stopped monitoring user activity")

    def _receive(self, raw_state: Any) -> None:
        state = map_activity_state(raw_state)
        logger.debug("User activity = %r → %s", raw_state, state.value)
        self._state = state
        if self._on_change is None:
            return
        try:
            self._on_change(state)
        except Exception:
            logger.exception("Activity state sink raised for %s", state.value)
