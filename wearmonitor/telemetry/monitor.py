"""HealthMonitor: the facade presentation code talks to.

Wires the session controller, delta aggregator, activity tracker and sleep
repository to a single ``AggregateStateStore``.  Every producer writes to the
store on the event loop, so the store has exactly one writer at a time.

Usage::

    monitor = HealthMonitor(measurement_source, passive_source, record_source)
    monitor.start_observing()
    await monitor.toggle_session(True)
    async with monitor.subscribe() as updates:
        async for snapshot in updates:
            ...
    await monitor.close()
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from datetime import datetime, timedelta
from functools import partial
from typing import Callable

from wearmonitor.telemetry.activity_tracker import ActivityStateTracker
from wearmonitor.telemetry.base import (
    ActivityState,
    HistoricalRecordSource,
    MeasurementSource,
    PassiveStateSource,
    SessionState,
    SleepSession,
    SleepSummary,
    utc_now,
)
from wearmonitor.telemetry.config_loader import TelemetryConfig, get_telemetry_config
from wearmonitor.telemetry.delta_aggregator import DeltaAggregator
from wearmonitor.telemetry.session_controller import SessionController, StartOutcome
from wearmonitor.telemetry.sleep_summary import SleepRepository
from wearmonitor.telemetry.state_store import (
    AggregateSnapshot,
    AggregateStateStore,
    Subscription,
)

logger = logging.getLogger("wearmonitor.telemetry.monitor")

# Applied when a brand-new session starts; a reused session keeps its values
# and the aggregator resumes from the published totals.
_FRESH_SESSION_FIELDS = {
    "heart_rate_bpm": None,
    "cadence_spm": None,
    "speed_mps": None,
    "pace_ms_per_km": None,
    "steps": 0,
    "calories_kcal": 0.0,
    "distance_m": 0.0,
    "elevation_gain_m": 0.0,
    "floors": 0.0,
    "active_seconds": None,
}


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class HealthMonitor:
    """Aggregates exercise, activity and sleep telemetry into one snapshot.

    Args:
        measurement_source: Exercise session SDK.
        passive_source:     Passive activity monitor.
        record_source:      Historical health record store.
        config:             Telemetry config; defaults to the YAML singleton.
        store:              State store to publish into; a fresh one by default.
        clock:              Returns the current UTC time.
    """

    def __init__(
        self,
        measurement_source: MeasurementSource,
        passive_source: PassiveStateSource,
        record_source: HistoricalRecordSource,
        config: TelemetryConfig | None = None,
        store: AggregateStateStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        config = config or get_telemetry_config()
        self._config = config
        self._store = store or AggregateStateStore(clock=clock)
        self._controller = SessionController(
            measurement_source, config.exercise.session_spec()
        )
        self._aggregator = DeltaAggregator(clock=clock)
        self._tracker = ActivityStateTracker(
            passive_source,
            on_change=self._on_activity_state,
            config=config.passive.listener_config(),
        )
        self._sleep = SleepRepository(
            record_source,
            live_lookback=config.sleep.live_lookback,
            history_lookback=config.sleep.history_lookback,
            clock=clock,
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._collector: asyncio.Task[None] | None = None
        self._sleep_task: asyncio.Task[None] | None = None
        self._toggle_lock = asyncio.Lock()
        self._observing = False

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> AggregateSnapshot:
        return self._store.snapshot

    @property
    def session_state(self) -> SessionState:
        return self._controller.state

    @property
    def is_collecting(self) -> bool:
        return self._collector is not None and not self._collector.done()

    @property
    def is_observing(self) -> bool:
        return self._observing

    def subscribe(self) -> Subscription:
        """Stream of snapshots; the current one is delivered first."""
        return self._store.subscribe()

    # ------------------------------------------------------------------
    # Passive observation
    # ------------------------------------------------------------------

    def start_observing(self) -> None:
        """Start activity monitoring and refresh sleep in the background.

        Must be called from the event loop.  Calling it again is a no-op.
        """
        if self._observing:
            logger.debug("start_observing() called again, ignoring")
            return
        self._loop = asyncio.get_running_loop()
        self._tracker.start_monitoring()
        self._sleep_task = asyncio.create_task(
            self._background_sleep_refresh(), name="sleep-refresh"
        )
        self._observing = True

    def _on_activity_state(self, state: ActivityState) -> None:
        # Passive callbacks may arrive off-loop; the store is only written on it.
        loop = self._loop
        if loop is None or loop.is_closed() or _running_loop() is loop:
            self._store.merge(activity_state=state)
            return
        loop.call_soon_threadsafe(partial(self._store.merge, activity_state=state))

    async def _background_sleep_refresh(self) -> None:
        try:
            await self.refresh_sleep_summary()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Background sleep refresh failed")

    # ------------------------------------------------------------------
    # Exercise session
    # ------------------------------------------------------------------

    async def toggle_session(self, on: bool) -> None:
        """Switch exercise collection on or off.

        ``True`` returns once the session is started (or an existing one is
        reused); ``False`` releases the update callback and ends the session.

        Raises:
            SourceUnavailable:  If the session could not be started or ended.
            RegistrationFailed: If the source rejected the update callback.
        """
        async with self._toggle_lock:
            if on:
                await self._start_collection()
            else:
                await self._stop_collection()

    async def _start_collection(self) -> None:
        if self.is_collecting:
            logger.debug("Exercise collection already running")
            return

        started: asyncio.Future[StartOutcome] = asyncio.get_running_loop().create_future()
        self._collector = asyncio.create_task(
            self._collect_exercise(started), name="exercise-collector"
        )
        try:
            outcome = await started
        except asyncio.CancelledError:
            await self._cancel_collector()
            raise
        except Exception as exc:
            self._store.merge(session_active=False, session_error=str(exc))
            raise
        logger.info("Exercise collection on (%s)", outcome.value)

    async def _stop_collection(self) -> None:
        await self._cancel_collector()
        try:
            await self._controller.stop()
        finally:
            self._store.merge(session_active=False)
        logger.info("Exercise collection off")

    async def _collect_exercise(self, started: asyncio.Future[StartOutcome]) -> None:
        def on_start(outcome: StartOutcome) -> None:
            if outcome is StartOutcome.STARTED:
                self._aggregator.reset()
                self._store.merge(
                    session_active=True, session_error=None, **_FRESH_SESSION_FIELDS
                )
            else:
                self._aggregator.seed(self._store.snapshot.totals)
                self._store.merge(session_active=True, session_error=None)
            if not started.done():
                started.set_result(outcome)

        try:
            async with aclosing(self._controller.stream(on_start=on_start)) as frames:
                async for frame in frames:
                    changes = self._aggregator.fold(frame)
                    if changes:
                        self._store.merge(**changes)
        except asyncio.CancelledError:
            if not started.done():
                started.cancel()
            raise
        except Exception as exc:
            if not started.done():
                # Start never completed: the toggling caller reports it.
                started.set_exception(exc)
                return
            logger.error("Exercise stream ended with error: %s", exc)
            self._store.merge(session_active=False, session_error=str(exc))

    async def _cancel_collector(self) -> None:
        collector, self._collector = self._collector, None
        if collector is None or collector.done():
            return
        collector.cancel()
        try:
            await collector
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Sleep
    # ------------------------------------------------------------------

    async def refresh_sleep_summary(self) -> SleepSummary | None:
        """Re-query last night's sleep and publish the result.

        A window with no session publishes ``sleep_summary=None``.

        Raises:
            SourceUnavailable: If the record query failed.  The previous
                summary stays published.
        """
        summary = await self._sleep.last_night_summary()
        self._store.merge(sleep_summary=summary)
        return summary

    async def recent_sleep_sessions(self, days: int | None = None) -> list[SleepSession]:
        """Sleep sessions of the last ``days`` days (config default), newest first."""
        if days is not None and days <= 0:
            raise ValueError(f"days must be positive, got {days}")
        lookback = timedelta(days=days) if days is not None else None
        return await self._sleep.recent_sessions(lookback)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Release every source callback and end all subscriptions.

        A running exercise session is left running on the source so a
        later start reuses it.
        """
        await self._cancel_collector()
        self._tracker.stop_monitoring()
        sleep_task, self._sleep_task = self._sleep_task, None
        if sleep_task is not None and not sleep_task.done():
            sleep_task.cancel()
            try:
                await sleep_task
            except asyncio.CancelledError:
                pass
        self._observing = False
        self._store.close()
        logger.info("Health monitor closed")
