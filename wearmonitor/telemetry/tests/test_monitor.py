"""Tests for the HealthMonitor facade wired to simulated sources."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from wearmonitor.telemetry.base import ActivityState, SessionInfo, SessionState, SleepSummary
from wearmonitor.telemetry.config_loader import TelemetryConfig
from wearmonitor.telemetry.errors import SourceUnavailable
from wearmonitor.telemetry.monitor import HealthMonitor
from wearmonitor.telemetry.sources import (
    InMemoryRecordSource,
    SimulatedMeasurementSource,
    SimulatedPassiveSource,
)
from wearmonitor.telemetry.state_store import AggregateSnapshot, AggregateStateStore
from wearmonitor.telemetry.tests.conftest import FixedClock, make_frame, wait_until

LAST_NIGHT = SleepSummary(
    total_minutes=480, deep_minutes=90, light_minutes=240, rem_minutes=90, awake_minutes=60
)


@pytest.fixture
def monitor(
    measurement_source: SimulatedMeasurementSource,
    passive_source: SimulatedPassiveSource,
    record_source: InMemoryRecordSource,
    telemetry_config: TelemetryConfig,
    clock: FixedClock,
) -> HealthMonitor:
    return HealthMonitor(
        measurement_source, passive_source, record_source, config=telemetry_config, clock=clock
    )


def _monitor_over(
    source: MagicMock,
    telemetry_config: TelemetryConfig,
    store: AggregateStateStore | None = None,
) -> HealthMonitor:
    return HealthMonitor(
        source,
        SimulatedPassiveSource(),
        InMemoryRecordSource(),
        config=telemetry_config,
        store=store,
    )


# ---------------------------------------------------------------------------
# Observation
# ---------------------------------------------------------------------------


class TestObserving:
    @pytest.mark.asyncio
    async def test_start_observing_refreshes_sleep(self, monitor: HealthMonitor) -> None:
        monitor.start_observing()
        await wait_until(lambda: monitor.snapshot.sleep_summary is not None)

        assert monitor.snapshot.sleep_summary == LAST_NIGHT
        assert monitor.is_observing
        await monitor.close()

    @pytest.mark.asyncio
    async def test_start_observing_is_idempotent(
        self, monitor: HealthMonitor, passive_source: SimulatedPassiveSource
    ) -> None:
        monitor.start_observing()
        monitor.start_observing()
        assert passive_source.has_listener
        await monitor.close()

    @pytest.mark.asyncio
    async def test_activity_state_published(
        self, monitor: HealthMonitor, passive_source: SimulatedPassiveSource
    ) -> None:
        monitor.start_observing()
        passive_source.push(3)
        assert monitor.snapshot.activity_state is ActivityState.ASLEEP

        passive_source.push("not-a-state")
        assert monitor.snapshot.activity_state is ActivityState.UNKNOWN
        await monitor.close()

    @pytest.mark.asyncio
    async def test_activity_state_from_another_thread(
        self, monitor: HealthMonitor, passive_source: SimulatedPassiveSource
    ) -> None:
        monitor.start_observing()
        await asyncio.to_thread(passive_source.push, "exercise")
        await wait_until(
            lambda: monitor.snapshot.activity_state is ActivityState.EXERCISING
        )
        await monitor.close()

    @pytest.mark.asyncio
    async def test_background_refresh_error_is_logged(
        self, telemetry_config: TelemetryConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        records = MagicMock(spec=InMemoryRecordSource)
        records.is_available.side_effect = RuntimeError("provider crashed")
        monitor = HealthMonitor(
            SimulatedMeasurementSource(), SimulatedPassiveSource(), records, config=telemetry_config
        )
        monitor.start_observing()
        await wait_until(lambda: "Background sleep refresh failed" in caplog.text)

        assert monitor.snapshot.sleep_summary is None
        await monitor.close()


# ---------------------------------------------------------------------------
# Exercise session
# ---------------------------------------------------------------------------


class TestToggleSession:
    @pytest.mark.asyncio
    async def test_fresh_session_folds_frames(
        self, monitor: HealthMonitor, measurement_source: SimulatedMeasurementSource
    ) -> None:
        await monitor.toggle_session(True)
        assert monitor.snapshot.session_active
        assert monitor.session_state is SessionState.ACTIVE
        assert measurement_source.callback_count == 1

        measurement_source.emit(make_frame(steps=12, heart_rate=131, checkpoint_seconds=30))
        measurement_source.emit(make_frame(steps=8, calories=1.25))
        await wait_until(lambda: monitor.snapshot.steps == 20)

        snapshot = monitor.snapshot
        assert snapshot.heart_rate_bpm == 131.0
        assert snapshot.calories_kcal == 1.25
        assert snapshot.active_seconds == 30
        await monitor.close()

    @pytest.mark.asyncio
    async def test_fresh_session_resets_previous_values(
        self,
        measurement_source: SimulatedMeasurementSource,
        telemetry_config: TelemetryConfig,
    ) -> None:
        store = AggregateStateStore(
            initial=AggregateSnapshot(steps=900, heart_rate_bpm=99.0, active_seconds=60)
        )
        monitor = HealthMonitor(
            measurement_source,
            SimulatedPassiveSource(),
            InMemoryRecordSource(),
            config=telemetry_config,
            store=store,
        )
        await monitor.toggle_session(True)

        assert monitor.snapshot.steps == 0
        assert monitor.snapshot.heart_rate_bpm is None
        assert monitor.snapshot.active_seconds is None
        await monitor.close()

    @pytest.mark.asyncio
    async def test_reused_session_keeps_totals(
        self, mock_measurement_source: MagicMock, telemetry_config: TelemetryConfig
    ) -> None:
        mock_measurement_source.get_current_session_info.return_value = SessionInfo(
            active=True, exercise_type="running"
        )
        store = AggregateStateStore(initial=AggregateSnapshot(steps=500, distance_m=400.0))
        monitor = _monitor_over(mock_measurement_source, telemetry_config, store)

        await monitor.toggle_session(True)
        assert monitor.snapshot.steps == 500
        mock_measurement_source.prepare.assert_not_awaited()

        callback = mock_measurement_source.register_callback.call_args.args[0]
        callback.on_frame(make_frame(steps=5, distance=3.5))
        await wait_until(lambda: monitor.snapshot.steps == 505)
        assert monitor.snapshot.distance_m == 403.5
        await monitor.close()

    @pytest.mark.asyncio
    async def test_second_toggle_on_is_noop(
        self, monitor: HealthMonitor, measurement_source: SimulatedMeasurementSource
    ) -> None:
        await monitor.toggle_session(True)
        version = monitor.snapshot.version
        await monitor.toggle_session(True)

        assert measurement_source.callback_count == 1
        assert monitor.snapshot.version == version
        await monitor.close()

    @pytest.mark.asyncio
    async def test_toggle_off_releases_and_ends(
        self, monitor: HealthMonitor, measurement_source: SimulatedMeasurementSource
    ) -> None:
        await monitor.toggle_session(True)
        await monitor.toggle_session(False)

        assert measurement_source.callback_count == 0
        assert measurement_source.active_spec is None
        assert not monitor.snapshot.session_active
        assert not monitor.is_collecting
        assert monitor.session_state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_toggle_off_without_session(self, monitor: HealthMonitor) -> None:
        await monitor.toggle_session(False)
        assert not monitor.snapshot.session_active

    @pytest.mark.asyncio
    async def test_second_toggle_off_keeps_totals(
        self, monitor: HealthMonitor, measurement_source: SimulatedMeasurementSource
    ) -> None:
        await monitor.toggle_session(True)
        measurement_source.emit(
            make_frame(steps=25, calories=3.5, distance=40.0, elevation_gain=1.2, floors=1)
        )
        await wait_until(lambda: monitor.snapshot.steps == 25)
        await monitor.toggle_session(False)
        totals = monitor.snapshot.totals

        await monitor.toggle_session(False)

        assert measurement_source.active_spec is None
        assert monitor.snapshot.totals == totals
        assert (monitor.snapshot.steps, monitor.snapshot.distance_m) == (25, 40.0)
        assert monitor.snapshot.calories_kcal == 3.5
        assert monitor.snapshot.floors == 1.0

    @pytest.mark.asyncio
    async def test_start_failure_raised(
        self, mock_measurement_source: MagicMock, telemetry_config: TelemetryConfig
    ) -> None:
        mock_measurement_source.activate.side_effect = RuntimeError("no sensors")
        monitor = _monitor_over(mock_measurement_source, telemetry_config)

        with pytest.raises(SourceUnavailable):
            await monitor.toggle_session(True)

        assert not monitor.snapshot.session_active
        assert "running" in monitor.snapshot.session_error
        assert not monitor.is_collecting
        mock_measurement_source.unregister_callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_stream_error_ends_session(
        self, mock_measurement_source: MagicMock, telemetry_config: TelemetryConfig
    ) -> None:
        monitor = _monitor_over(mock_measurement_source, telemetry_config)
        await monitor.toggle_session(True)

        callback = mock_measurement_source.register_callback.call_args.args[0]
        callback.on_registration_failed(PermissionError("BODY_SENSORS revoked"))
        await wait_until(lambda: not monitor.snapshot.session_active)

        assert "BODY_SENSORS revoked" in monitor.snapshot.session_error
        assert not monitor.is_collecting
        mock_measurement_source.unregister_callback.assert_called_once_with(callback)

    @pytest.mark.asyncio
    async def test_toggle_after_stream_error_starts_ended_session_again(
        self, mock_measurement_source: MagicMock, telemetry_config: TelemetryConfig
    ) -> None:
        monitor = _monitor_over(mock_measurement_source, telemetry_config)
        await monitor.toggle_session(True)
        callback = mock_measurement_source.register_callback.call_args.args[0]
        callback.on_registration_failed(PermissionError("BODY_SENSORS revoked"))
        await wait_until(lambda: not monitor.is_collecting)
        assert monitor.session_state is SessionState.IDLE

        await monitor.toggle_session(True)

        assert mock_measurement_source.get_current_session_info.await_count == 2
        assert mock_measurement_source.activate.await_count == 2
        assert monitor.session_state is SessionState.ACTIVE
        assert monitor.snapshot.session_active
        assert monitor.snapshot.session_error is None
        await monitor.close()

    @pytest.mark.asyncio
    async def test_toggle_after_stream_error_reuses_running_session(
        self, mock_measurement_source: MagicMock, telemetry_config: TelemetryConfig
    ) -> None:
        monitor = _monitor_over(mock_measurement_source, telemetry_config)
        await monitor.toggle_session(True)
        callback = mock_measurement_source.register_callback.call_args.args[0]
        callback.on_frame(make_frame(steps=30))
        await wait_until(lambda: monitor.snapshot.steps == 30)
        callback.on_registration_failed(PermissionError("BODY_SENSORS revoked"))
        await wait_until(lambda: not monitor.is_collecting)

        mock_measurement_source.get_current_session_info.return_value = SessionInfo(
            active=True, exercise_type="running"
        )
        await monitor.toggle_session(True)

        assert mock_measurement_source.activate.await_count == 1
        assert monitor.snapshot.session_active
        assert monitor.snapshot.steps == 30
        await monitor.close()

    @pytest.mark.asyncio
    async def test_restart_after_toggle_off_starts_fresh(
        self, monitor: HealthMonitor, measurement_source: SimulatedMeasurementSource
    ) -> None:
        await monitor.toggle_session(True)
        measurement_source.emit(make_frame(steps=40))
        await wait_until(lambda: monitor.snapshot.steps == 40)
        await monitor.toggle_session(False)

        await monitor.toggle_session(True)
        assert monitor.snapshot.steps == 0
        measurement_source.emit(make_frame(steps=3))
        await wait_until(lambda: monitor.snapshot.steps == 3)
        await monitor.close()


# ---------------------------------------------------------------------------
# Sleep
# ---------------------------------------------------------------------------


class TestSleep:
    @pytest.mark.asyncio
    async def test_refresh_publishes_summary(self, monitor: HealthMonitor) -> None:
        summary = await monitor.refresh_sleep_summary()
        assert summary == LAST_NIGHT
        assert monitor.snapshot.sleep_summary == LAST_NIGHT
        assert monitor.snapshot.sleep_percentages.light == 50

    @pytest.mark.asyncio
    async def test_empty_refresh_clears_summary(
        self, telemetry_config: TelemetryConfig, clock: FixedClock
    ) -> None:
        store = AggregateStateStore(initial=AggregateSnapshot(sleep_summary=LAST_NIGHT))
        monitor = HealthMonitor(
            SimulatedMeasurementSource(),
            SimulatedPassiveSource(),
            InMemoryRecordSource(),
            config=telemetry_config,
            store=store,
            clock=clock,
        )
        assert await monitor.refresh_sleep_summary() is None
        assert monitor.snapshot.sleep_summary is None

    @pytest.mark.asyncio
    async def test_recent_sessions(self, monitor: HealthMonitor) -> None:
        sessions = await monitor.recent_sleep_sessions()
        assert [s.session_id for s in sessions] == ["night-1", "nap-1", "night-0"]

        one_day = await monitor.recent_sleep_sessions(days=1)
        assert [s.session_id for s in one_day] == ["night-1", "nap-1"]

    @pytest.mark.asyncio
    async def test_recent_sessions_rejects_non_positive_days(
        self, monitor: HealthMonitor
    ) -> None:
        with pytest.raises(ValueError):
            await monitor.recent_sleep_sessions(days=0)


# ---------------------------------------------------------------------------
# Subscriptions and shutdown
# ---------------------------------------------------------------------------


class TestSubscribeAndClose:
    @pytest.mark.asyncio
    async def test_subscriber_sees_latest_then_updates(self, monitor: HealthMonitor) -> None:
        await monitor.refresh_sleep_summary()
        updates = monitor.subscribe()

        first = await asyncio.wait_for(updates.__anext__(), 1.0)
        assert first.sleep_summary == LAST_NIGHT

        await monitor.toggle_session(True)
        second = await asyncio.wait_for(updates.__anext__(), 1.0)
        assert second.session_active
        await monitor.close()

    @pytest.mark.asyncio
    async def test_close_releases_everything(
        self,
        monitor: HealthMonitor,
        measurement_source: SimulatedMeasurementSource,
        passive_source: SimulatedPassiveSource,
    ) -> None:
        monitor.start_observing()
        await monitor.toggle_session(True)
        updates = monitor.subscribe()

        await monitor.close()

        assert measurement_source.callback_count == 0
        assert not passive_source.has_listener
        assert not monitor.is_observing
        remaining = [s async for s in updates]
        assert len(remaining) >= 1
        assert updates.closed
