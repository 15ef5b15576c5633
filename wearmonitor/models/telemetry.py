"""Telemetry response and request schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from wearmonitor.models.base import WearMonitorBase
from wearmonitor.telemetry.base import ActivityState, SessionState, SleepSession, SleepSummary
from wearmonitor.telemetry.sleep_summary import compute_sleep_summary
from wearmonitor.telemetry.state_store import AggregateSnapshot


# ---------- Sleep ----------


class SleepPercentagesRead(WearMonitorBase):
    deep: int
    light: int
    rem: int
    awake: int


class SleepSummaryRead(WearMonitorBase):
    total_minutes: int
    deep_minutes: int
    light_minutes: int
    rem_minutes: int
    awake_minutes: int
    total_hours_label: str
    percentages: SleepPercentagesRead

    @classmethod
    def from_summary(cls, summary: SleepSummary) -> SleepSummaryRead:
        pct = summary.percentages()
        return cls(
            total_minutes=summary.total_minutes,
            deep_minutes=summary.deep_minutes,
            light_minutes=summary.light_minutes,
            rem_minutes=summary.rem_minutes,
            awake_minutes=summary.awake_minutes,
            total_hours_label=summary.total_hours_label,
            percentages=SleepPercentagesRead(
                deep=pct.deep, light=pct.light, rem=pct.rem, awake=pct.awake
            ),
        )


class SleepRefreshRead(WearMonitorBase):
    available: bool
    summary: SleepSummaryRead | None = None


class SleepStageRead(WearMonitorBase):
    start: datetime
    end: datetime
    stage: str


class SleepSessionRead(WearMonitorBase):
    session_id: str
    start: datetime
    end: datetime
    title: str | None = None
    stages: list[SleepStageRead] = Field(default_factory=list)
    summary: SleepSummaryRead

    @classmethod
    def from_session(cls, session: SleepSession) -> SleepSessionRead:
        return cls(
            session_id=session.session_id,
            start=session.start,
            end=session.end,
            title=session.title,
            stages=[
                SleepStageRead(
                    start=st.start,
                    end=st.end,
                    stage=getattr(st.stage, "value", str(st.stage)),
                )
                for st in session.stages
            ],
            summary=SleepSummaryRead.from_summary(compute_sleep_summary(session.stages)),
        )


# ---------- Snapshot ----------


class SnapshotRead(WearMonitorBase):
    heart_rate_bpm: float | None = None
    cadence_spm: float | None = None
    speed_mps: float | None = None
    pace_ms_per_km: float | None = None
    steps: int = 0
    calories_kcal: float = 0.0
    distance_m: float = 0.0
    elevation_gain_m: float = 0.0
    floors: float = 0.0
    active_seconds: int | None = None
    activity_state: ActivityState = ActivityState.UNKNOWN
    sleep_summary: SleepSummaryRead | None = None
    session_active: bool = False
    session_error: str | None = None
    version: int = 0
    updated_at: datetime | None = None

    @classmethod
    def from_snapshot(cls, snapshot: AggregateSnapshot) -> SnapshotRead:
        summary = snapshot.sleep_summary
        return cls(
            heart_rate_bpm=snapshot.heart_rate_bpm,
            cadence_spm=snapshot.cadence_spm,
            speed_mps=snapshot.speed_mps,
            pace_ms_per_km=snapshot.pace_ms_per_km,
            steps=snapshot.steps,
            calories_kcal=snapshot.calories_kcal,
            distance_m=snapshot.distance_m,
            elevation_gain_m=snapshot.elevation_gain_m,
            floors=snapshot.floors,
            active_seconds=snapshot.active_seconds,
            activity_state=snapshot.activity_state,
            sleep_summary=SleepSummaryRead.from_summary(summary) if summary else None,
            session_active=snapshot.session_active,
            session_error=snapshot.session_error,
            version=snapshot.version,
            updated_at=snapshot.updated_at,
        )


# ---------- Session ----------


class SessionToggle(WearMonitorBase):
    on: bool


class SessionStatusRead(WearMonitorBase):
    session_active: bool
    state: SessionState
    session_error: str | None = None


# ---------- Activity ----------


class ActivityPush(WearMonitorBase):
    """Raw passive classification, as a code (``3``) or a name (``"asleep"``)."""

    state: int | str


class ActivityStateRead(WearMonitorBase):
    activity_state: ActivityState
