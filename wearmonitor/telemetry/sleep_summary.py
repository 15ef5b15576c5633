"""Sleep stage summaries and last-night selection.

Pure helpers (``compute_sleep_summary``, ``parse_sleep_record``,
``select_latest_session``) plus ``SleepRepository``, which queries a
``HistoricalRecordSource`` over a lookback window and applies them.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from wearmonitor.telemetry.base import (
    HistoricalRecordSource,
    SleepSession,
    SleepStage,
    SleepStageInterval,
    SleepSummary,
    utc_now,
)
from wearmonitor.telemetry.errors import SourceUnavailable, StageUnrecognized

logger = logging.getLogger("wearmonitor.telemetry.sleep")

SLEEP_SESSION_RECORD = "sleep_session"

# Health Connect SleepSessionRecord.STAGE_TYPE_* → canonical stage.
# 0 (unknown) and 2 (generic "sleeping") have no canonical stage.
_STAGE_CODE_MAP: dict[int, SleepStage] = {
    1: SleepStage.AWAKE,
    3: SleepStage.AWAKE,  # out of bed
    4: SleepStage.LIGHT,
    5: SleepStage.DEEP,
    6: SleepStage.REM,
    7: SleepStage.AWAKE,  # awake in bed
}

_STAGE_CODE_NAMES: dict[int, str] = {0: "unknown", 2: "sleeping"}


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def _stage_bucket(stage: SleepStage | str) -> SleepStage:
    """Resolve a stage tag to its canonical bucket.

    Raises:
        StageUnrecognized: If the tag matches no canonical stage.
    """
    if isinstance(stage, SleepStage):
        return stage
    try:
        return SleepStage(str(stage).strip().lower())
    except ValueError:
        raise StageUnrecognized(stage) from None


def _whole_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants, truncated toward zero."""
    return int((end - start).total_seconds() / 60)


def compute_sleep_summary(intervals: Iterable[SleepStageInterval]) -> SleepSummary:
    """Sum stage intervals into per-stage minutes.

    Intervals with an unrecognized stage are counted as awake.  Inverted
    intervals (end before start) contribute nothing.  ``total_minutes`` is
    floored at 1, so an empty input yields all-zero stages with total 1.

    Args:
        intervals: Stage intervals of a single sleep session.

    Returns:
        SleepSummary.
    """
    buckets = {stage: 0 for stage in SleepStage}

    for interval in intervals:
        minutes = _whole_minutes(interval.start, interval.end)
        if minutes < 0:
            logger.warning(
                "Ignoring inverted sleep interval %s → %s", interval.start, interval.end
            )
            continue
        try:
            bucket = _stage_bucket(interval.stage)
        except StageUnrecognized as exc:
            logger.debug("%s; counting %d min as awake", exc, minutes)
            bucket = SleepStage.AWAKE
        buckets[bucket] += minutes

    total = sum(buckets.values())
    return SleepSummary(
        total_minutes=max(1, total),
        deep_minutes=buckets[SleepStage.DEEP],
        light_minutes=buckets[SleepStage.LIGHT],
        rem_minutes=buckets[SleepStage.REM],
        awake_minutes=buckets[SleepStage.AWAKE],
    )


def sleep_percentages(summary: SleepSummary) -> dict[str, int]:
    """Return integer-truncated stage percentages keyed by stage name."""
    pct = summary.percentages()
    return {"deep": pct.deep, "light": pct.light, "rem": pct.rem, "awake": pct.awake}


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_stage(raw: Any) -> SleepStage | str:
    if isinstance(raw, SleepStage):
        return raw
    if isinstance(raw, int) and not isinstance(raw, bool):
        if raw in _STAGE_CODE_MAP:
            return _STAGE_CODE_MAP[raw]
        return _STAGE_CODE_NAMES.get(raw, str(raw))
    try:
        return _stage_bucket(raw)
    except StageUnrecognized:
        return str(raw)


def parse_sleep_record(raw: dict[str, Any]) -> SleepSession:
    """Convert a raw sleep session record into a ``SleepSession``.

    Expected shape (Health Connect style)::

        {"id": "...", "start_time": "2026-02-22T23:00:00Z", "end_time": "...",
         "title": "...", "stages": [{"start_time": ..., "end_time": ..., "stage": 5}]}

    Stages are sorted by start time.  Unmapped stage codes are kept as raw
    tags.  Pure function.

    Raises:
        KeyError / ValueError: If the session's own timestamps are missing or invalid.
    """
    stages = [
        SleepStageInterval(
            start=_parse_time(st["start_time"]),
            end=_parse_time(st["end_time"]),
            stage=_parse_stage(st.get("stage")),
        )
        for st in raw.get("stages") or []
    ]
    stages.sort(key=lambda s: s.start)
    return SleepSession(
        session_id=str(raw.get("id", "")),
        start=_parse_time(raw["start_time"]),
        end=_parse_time(raw["end_time"]),
        title=raw.get("title"),
        stages=tuple(stages),
    )


def select_latest_session(sessions: Iterable[SleepSession]) -> SleepSession | None:
    """Return the session with the latest end time, or None if there are none.

    On equal end times the first one in source order wins.
    """
    latest: SleepSession | None = None
    for session in sessions:
        if latest is None or session.end > latest.end:
            latest = session
    return latest


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SleepRepository:
    """Read sleep sessions from a record source over a lookback window.

    Args:
        source:           Historical record source.
        live_lookback:    Window for ``last_night_summary()`` (24 h).
        history_lookback: Default window for ``recent_sessions()`` (3 days).
        clock:            Returns the current UTC time.
    """

    def __init__(
        self,
        source: HistoricalRecordSource,
        live_lookback: timedelta = timedelta(hours=24),
        history_lookback: timedelta = timedelta(days=3),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._source = source
        self._live_lookback = live_lookback
        self._history_lookback = history_lookback
        self._clock = clock

    async def _sessions_between(self, start: datetime, end: datetime) -> list[SleepSession]:
        try:
            if not await self._source.is_available():
                logger.info("Sleep record source unavailable; no sleep data")
                return []
            raw_records = await self._source.query(SLEEP_SESSION_RECORD, start, end)
        except Exception as exc:
            raise SourceUnavailable("Sleep record query failed") from exc

        sessions: list[SleepSession] = []
        for raw in raw_records:
            try:
                sessions.append(parse_sleep_record(raw))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed sleep record %r: %s", raw.get("id"), exc)
        return sessions

    async def recent_sessions(self, lookback: timedelta | None = None) -> list[SleepSession]:
        """List sessions in the browsing window, newest end time first."""
        end = self._clock()
        start = end - (lookback or self._history_lookback)
        sessions = await self._sessions_between(start, end)
        return sorted(sessions, key=lambda s: s.end, reverse=True)

    async def last_night_summary(self) -> SleepSummary | None:
        """Summarize the latest session in the live window.

        Returns:
            SleepSummary, or None when no session was recorded in the window.

        Raises:
            SourceUnavailable: If the record query failed.
        """
        end = self._clock()
        sessions = await self._sessions_between(end - self._live_lookback, end)
        latest = select_latest_session(sessions)
        if latest is None:
            logger.info("No sleep session in the last %s", self._live_lookback)
            return None
        summary = compute_sleep_summary(latest.stages)
        logger.info(
            "Sleep summary for session %s: total=%d deep=%d light=%d rem=%d awake=%d",
            latest.session_id,
            summary.total_minutes,
            summary.deep_minutes,
            summary.light_minutes,
            summary.rem_minutes,
            summary.awake_minutes,
        )
        return summary
