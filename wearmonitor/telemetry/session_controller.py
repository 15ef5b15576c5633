"""Exercise session lifecycle against a single ``MeasurementSource``.

The controller is the only component that talks to the source's session API.
It enforces the single-active-session policy by asking the source whether a
session is already running before issuing the two-phase start, and it owns the
one update callback registered with the source.

State machine::

    IDLE -[start, none running]-> PREPARING -[activate ok]-> ACTIVE
    IDLE -[start, already running]-> ACTIVE                 (reuse)
    ACTIVE -[stop]-> ENDING -[end acknowledged]-> IDLE
    PREPARING -[failure or cancellation]-> IDLE
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from enum import Enum
from typing import AsyncIterator, Callable, Iterator

from wearmonitor.telemetry.base import (
    Availability,
    ExerciseMetricsFrame,
    MeasurementSource,
    MetricsCallback,
    MetricType,
    SessionSpec,
    SessionState,
)
from wearmonitor.telemetry.errors import (
    NoActiveSession,
    RegistrationFailed,
    SourceUnavailable,
)

logger = logging.getLogger("wearmonitor.telemetry.session")


class StartOutcome(str, Enum):
    """How ``SessionController.start()`` reached the ACTIVE state."""

    STARTED = "started"
    REUSED = "reused"
    ALREADY_ACTIVE = "already_active"


class FrameChannel(MetricsCallback):
    """Callback that forwards source pushes into an asyncio queue.

    Sources may invoke callbacks from their own thread, so every push is
    handed to the owning loop with ``call_soon_threadsafe``.  Arrival order
    is preserved.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._queue: asyncio.Queue[ExerciseMetricsFrame | BaseException] = asyncio.Queue()

    def on_frame(self, frame: ExerciseMetricsFrame) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, frame)

    def on_availability_changed(
        self, metric_type: MetricType, availability: Availability
    ) -> None:
        logger.debug("Availability %s: %s", metric_type.value, availability.value)

    def on_registered(self) -> None:
        logger.debug("Exercise update callback registered")

    def on_registration_failed(self, error: BaseException) -> None:
        logger.error("Exercise update callback registration failed: %s", error)
        failure = RegistrationFailed(f"Callback registration rejected: {error}")
        failure.__cause__ = error
        self._loop.call_soon_threadsafe(self._queue.put_nowait, failure)

    async def get(self) -> ExerciseMetricsFrame:
        """Wait for the next frame; raise the terminal error if one arrived."""
        item = await self._queue.get()
        if isinstance(item, BaseException):
            raise item
        return item


class SessionController:
    """Owns one exercise session and its update callback.

    Usage::

        controller = SessionController(source, config.exercise.session_spec())
        async with aclosing(controller.stream(on_start=handle_outcome)) as frames:
            async for frame in frames:
                ...
        await controller.stop()
    """

    def __init__(self, source: MeasurementSource, spec: SessionSpec) -> None:
        self._source = source
        self._spec = spec
        self._state = SessionState.IDLE
        self._callback: MetricsCallback | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def spec(self) -> SessionSpec:
        return self._spec

    @property
    def is_listening(self) -> bool:
        return self._callback is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> StartOutcome:
        """Bring the session to ACTIVE, reusing one already running on the source.

        Returns:
            STARTED for a fresh two-phase start, REUSED when the source already
            had a session running, ALREADY_ACTIVE when this controller is active.

        Raises:
            SourceUnavailable: If the status query, prepare or activate failed.
                The controller is back in IDLE.
        """
        if self._state is SessionState.ACTIVE:
            logger.debug("start() ignored: session already active")
            return StartOutcome.ALREADY_ACTIVE
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Cannot start a session while {self._state.value}")

        try:
            info = await self._source.get_current_session_info()
        except Exception as exc:
            raise SourceUnavailable("Could not query the current session") from exc

        if info.active:
            logger.info(
                "Exercise already in progress (%s), reusing existing session",
                info.exercise_type or "unknown",
            )
            self._state = SessionState.ACTIVE
            return StartOutcome.REUSED

        self._state = SessionState.PREPARING
        try:
            await self._source.prepare(self._spec)
            await self._source.activate(self._spec)
        except asyncio.CancelledError:
            self._state = SessionState.IDLE
            raise
        except Exception as exc:
            self._state = SessionState.IDLE
            logger.error("Failed to start %s session: %s", self._spec.exercise_type, exc)
            raise SourceUnavailable(
                f"Could not start {self._spec.exercise_type} session",
                {"exercise_type": self._spec.exercise_type},
            ) from exc

        self._state = SessionState.ACTIVE
        logger.info(
            "Exercise started: type=%s metrics=%s",
            self._spec.exercise_type,
            sorted(m.value for m in self._spec.metric_types),
        )
        return StartOutcome.STARTED

    async def stop(self) -> None:
        """End the session on the source.

        Stopping with nothing active is a no-op.  The controller always
        finishes in IDLE.

        Raises:
            SourceUnavailable: If the source failed to end a running session.
        """
        self._state = SessionState.ENDING
        try:
            await self._source.end()
            logger.info("Exercise session ended")
        except NoActiveSession:
            logger.info("stop() requested with no active session")
        except Exception as exc:
            raise SourceUnavailable("Could not end the exercise session") from exc
        finally:
            self._state = SessionState.IDLE

    # ------------------------------------------------------------------
    # Callback registration
    # ------------------------------------------------------------------

    @contextmanager
    def attach_listener(self, sink: MetricsCallback) -> Iterator[MetricsCallback]:
        """Register ``sink`` with the source for the duration of the block.

        The callback is unregistered on every exit path.

        Raises:
            RuntimeError:       If a listener is already attached.
            RegistrationFailed: If the source refused the registration.
        """
        if self._callback is not None:
            raise RuntimeError("An update listener is already attached")
        try:
            self._source.register_callback(sink)
        except Exception as exc:
            raise RegistrationFailed(f"Callback registration rejected: {exc}") from exc
        self._callback = sink
        try:
            yield sink
        finally:
            self._release_listener()

    def _release_listener(self) -> None:
        callback, self._callback = self._callback, None
        if callback is None:
            return
        try:
            self._source.unregister_callback(callback)
            logger.debug("Exercise update callback unregistered")
        except Exception:
            logger.warning("Failed to unregister exercise update callback", exc_info=True)

    async def stream(
        self, on_start: Callable[[StartOutcome], None] | None = None
    ) -> AsyncIterator[ExerciseMetricsFrame]:
        """Attach a listener, start the session and yield frames in arrival order.

        The listener is attached before ``start()`` so no frame emitted right
        after activation is lost.  ``on_start`` receives the start outcome
        before the first frame is yielded.

        When the stream ends without ``stop()`` the controller returns to IDLE
        and the source session is left running, so a later ``start()`` reuses
        it only if the source still reports it.

        Raises:
            SourceUnavailable:  If the session could not be started.
            RegistrationFailed: If the source rejected the callback.
        """
        channel = FrameChannel(asyncio.get_running_loop())
        with self.attach_listener(channel):
            try:
                outcome = await self.start()
                if on_start is not None:
                    on_start(outcome)
                while True:
                    yield await channel.get()
            finally:
                if self._state is SessionState.ACTIVE:
                    # IDLE makes the next start() query the source.
                    logger.info("Exercise stream closed; session left to the source")
                    self._state = SessionState.IDLE
