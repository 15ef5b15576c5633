"""The published aggregate state and its broadcast mechanism.

``AggregateSnapshot`` is immutable.  Every change is a pure transform from the
previous snapshot to a new one; fields a transform does not mention keep their
previous value.  ``AggregateStateStore`` applies transforms one at a time and
pushes each resulting snapshot to every subscriber, replaying the latest one
on subscribe.

All mutation happens on the event loop thread; transforms are synchronous and
never await, so no snapshot is ever published half-applied.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, Callable

from wearmonitor.telemetry.base import (
    ActivityState,
    SleepPercentages,
    SleepSummary,
    utc_now,
)
from wearmonitor.telemetry.delta_aggregator import CumulativeTotals

logger = logging.getLogger("wearmonitor.telemetry.store")


@dataclass(frozen=True)
class AggregateSnapshot:
    """One published state of the aggregate.

    Gauges and ``active_seconds`` are None until a reading arrives, so "no
    data" stays distinguishable from a genuine zero.

    Attributes:
        heart_rate_bpm:   Latest heart rate.
        cadence_spm:      Latest step cadence (steps/min).
        speed_mps:        Latest speed (m/s).
        pace_ms_per_km:   Latest pace (ms/km).
        steps:            Session step total.
        calories_kcal:    Session calorie total.
        distance_m:       Session distance total.
        elevation_gain_m: Session elevation gain total.
        floors:           Session floors total.
        active_seconds:   Active session duration.
        activity_state:   Passive activity state.
        sleep_summary:    Last night's summary; None until a refresh found one.
        session_active:   Whether exercise collection is switched on.
        session_error:    Message of the error that ended the last session stream.
        version:          Increments on every publish.
        updated_at:       UTC time of the last publish.
    """

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
    sleep_summary: SleepSummary | None = None
    session_active: bool = False
    session_error: str | None = None
    version: int = 0
    updated_at: datetime | None = None

    def merge(self, **changes: Any) -> AggregateSnapshot:
        """Return a copy with ``changes`` applied and every other field kept.

        Raises:
            TypeError: On an unknown field name.
        """
        unknown = set(changes) - _SNAPSHOT_FIELDS
        if unknown:
            raise TypeError(f"Unknown snapshot field(s): {sorted(unknown)}")
        return replace(self, **changes)

    @property
    def totals(self) -> CumulativeTotals:
        return CumulativeTotals(
            steps=self.steps,
            calories_kcal=self.calories_kcal,
            distance_m=self.distance_m,
            elevation_gain_m=self.elevation_gain_m,
            floors=self.floors,
        )

    @property
    def sleep_percentages(self) -> SleepPercentages | None:
        if self.sleep_summary is None:
            return None
        return self.sleep_summary.percentages()


_SNAPSHOT_FIELDS = frozenset(f.name for f in fields(AggregateSnapshot))


class Subscription:
    """Async iterator over published snapshots, starting with the latest one.

    Usage::

        async with store.subscribe() as updates:
            async for snapshot in updates:
                render(snapshot)
    """

    def __init__(self, store: AggregateStateStore, initial: AggregateSnapshot) -> None:
        self._store = store
        self._queue: asyncio.Queue[AggregateSnapshot | None] = asyncio.Queue()
        self._queue.put_nowait(initial)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, snapshot: AggregateSnapshot) -> None:
        if not self._closed:
            self._queue.put_nowait(snapshot)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._unsubscribe(self)
        self._queue.put_nowait(None)  # wake a pending __anext__

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> AggregateSnapshot:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        snapshot = await self._queue.get()
        if snapshot is None:
            raise StopAsyncIteration
        return snapshot

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class AggregateStateStore:
    """Single source of truth for presentation.

    The store never fetches data itself.  Producers hand it transforms (or
    partial field updates through ``merge``) and it broadcasts the result.
    """

    def __init__(
        self,
        initial: AggregateSnapshot | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._snapshot = initial or AggregateSnapshot()
        self._clock = clock
        self._subscribers: list[Subscription] = []

    @property
    def snapshot(self) -> AggregateSnapshot:
        return self._snapshot

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def update(
        self, transform: Callable[[AggregateSnapshot], AggregateSnapshot]
    ) -> AggregateSnapshot:
        """Apply ``transform`` to the current snapshot and publish the result.

        A transform that returns its input unchanged publishes nothing.

        Returns:
            The snapshot now current.
        """
        previous = self._snapshot
        proposed = transform(previous)
        if proposed is previous or proposed == previous:
            return previous

        snapshot = replace(proposed, version=previous.version + 1, updated_at=self._clock())
        self._snapshot = snapshot
        for subscriber in list(self._subscribers):
            subscriber._push(snapshot)
        return snapshot

    def merge(self, **changes: Any) -> AggregateSnapshot:
        """Publish a partial update; unspecified fields keep their value."""
        if not changes:
            return self._snapshot
        return self.update(lambda current: current.merge(**changes))

    def subscribe(self) -> Subscription:
        """Subscribe to snapshots.  The latest snapshot is delivered first."""
        subscription = Subscription(self, self._snapshot)
        self._subscribers.append(subscription)
        logger.debug("Subscriber added (%d total)", len(self._subscribers))
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        try:
            self._subscribers.remove(subscription)
        except ValueError:
            return
        logger.debug("Subscriber removed (%d total)", len(self._subscribers))

    def close(self) -> None:
        """Close every open subscription."""
        for subscription in list(self._subscribers):
            subscription.close()
