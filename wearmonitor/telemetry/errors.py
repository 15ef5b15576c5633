"""Error taxonomy for the telemetry core."""

from __future__ import annotations

from typing import Any


class TelemetryError(Exception):
    """Base class for telemetry errors surfaced to callers."""

    code: str = "TELEMETRY_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class SourceUnavailable(TelemetryError):
    """A prepare/activate/end/query call to an external source failed."""

    code = "SOURCE_UNAVAILABLE"


class RegistrationFailed(TelemetryError):
    """The measurement source rejected the update callback."""

    code = "REGISTRATION_FAILED"


class NoActiveSession(TelemetryError):
    """``end()`` was requested with no session running."""

    code = "NO_ACTIVE_SESSION"


class StageUnrecognized(TelemetryError, ValueError):
    """A sleep stage tag has no canonical mapping."""

    code = "STAGE_UNRECOGNIZED"

    def __init__(self, tag: Any) -> None:
        super().__init__(f"Unrecognized sleep stage: {tag!r}", {"tag": tag})
        self.tag = tag
