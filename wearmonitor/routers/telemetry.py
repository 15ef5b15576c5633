"""Telemetry endpoints: live snapshot, server-sent event stream, session toggle, sleep."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from wearmonitor.dependencies import DebugPassiveSource, DebugRecordSource, Monitor
from wearmonitor.models.base import ErrorDetail
from wearmonitor.models.telemetry import (
    ActivityPush,
    ActivityStateRead,
    SessionStatusRead,
    SessionToggle,
    SleepRefreshRead,
    SleepSessionRead,
    SleepSummaryRead,
    SnapshotRead,
)
from wearmonitor.telemetry.base import SleepSummary
from wearmonitor.telemetry.state_store import Subscription

router = APIRouter(prefix="/telemetry", tags=["telemetry"])
logger = logging.getLogger("wearmonitor.routers.telemetry")


async def snapshot_events(updates: Subscription) -> AsyncIterator[str]:
    """Render each published snapshot as one server-sent event."""
    async with updates:
        async for snapshot in updates:
            body = SnapshotRead.from_snapshot(snapshot).model_dump_json()
            yield f"id: {snapshot.version}\nevent: snapshot\ndata: {body}\n\n"


def _refresh_result(summary: SleepSummary | None) -> SleepRefreshRead:
    if summary is None:
        return SleepRefreshRead(available=False)
    return SleepRefreshRead(available=True, summary=SleepSummaryRead.from_summary(summary))


# ---------- Snapshot ----------

@router.get("/snapshot", response_model=SnapshotRead)
async def get_snapshot(monitor: Monitor) -> Any:
    return SnapshotRead.from_snapshot(monitor.snapshot)


@router.get("/stream")
async def stream_snapshots(monitor: Monitor) -> StreamingResponse:
    """Server-sent events; the current snapshot is sent first."""
    logger.debug("Snapshot stream opened")
    return StreamingResponse(
        snapshot_events(monitor.subscribe()),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ---------- Exercise session ----------

@router.put(
    "/session",
    response_model=SessionStatusRead,
    responses={502: {"model": ErrorDetail}, 503: {"model": ErrorDetail}},
)
async def toggle_session(monitor: Monitor, body: SessionToggle) -> Any:
    await monitor.toggle_session(body.on)
    snapshot = monitor.snapshot
    return SessionStatusRead(
        session_active=snapshot.session_active,
        state=monitor.session_state,
        session_error=snapshot.session_error,
    )


# ---------- Sleep ----------

@router.post(
    "/sleep/refresh",
    response_model=SleepRefreshRead,
    responses={503: {"model": ErrorDetail}},
)
async def refresh_sleep(monitor: Monitor) -> Any:
    return _refresh_result(await monitor.refresh_sleep_summary())


@router.get("/sleep/sessions", response_model=list[SleepSessionRead])
async def list_sleep_sessions(
    monitor: Monitor,
    days: int | None = Query(default=None, ge=1, le=30),
) -> Any:
    sessions = await monitor.recent_sleep_sessions(days)
    return [SleepSessionRead.from_session(s) for s in sessions]


@router.post("/sleep/debug-session", response_model=SleepRefreshRead, status_code=201)
async def insert_debug_sleep_session(
    monitor: Monitor, records: DebugRecordSource
) -> Any:
    """Insert a fake 8-hour night into the simulated record store and refresh."""
    records.insert_fake_sleep_session()
    return _refresh_result(await monitor.refresh_sleep_summary())


# ---------- Activity ----------

@router.post("/activity/debug-state", response_model=ActivityStateRead)
async def push_debug_activity_state(
    monitor: Monitor, passive: DebugPassiveSource, body: ActivityPush
) -> Any:
    """Feed a raw classification to the simulated passive monitor."""
    passive.push(body.state)
    return ActivityStateRead(activity_state=monitor.snapshot.activity_state)
