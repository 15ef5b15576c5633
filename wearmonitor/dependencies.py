"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request

from wearmonitor.config import Settings, get_settings
from wearmonitor.telemetry.monitor import HealthMonitor
from wearmonitor.telemetry.sources import InMemoryRecordSource, SimulatedPassiveSource


def get_monitor(request: Request) -> HealthMonitor:
    """Return the process-wide monitor built during lifespan startup."""
    monitor: HealthMonitor | None = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(status_code=503, detail="Telemetry monitor not running")
    return monitor


def _debug_source(request: Request, settings: Settings, name: str, kind: type) -> Any:
    source = getattr(request.app.state, name, None)
    if settings.is_production or not isinstance(source, kind):
        raise HTTPException(status_code=404, detail="Not found")
    return source


def get_debug_record_source(
    request: Request, settings: Annotated[Settings, Depends(get_settings)]
) -> InMemoryRecordSource:
    """The writable record store, only available with simulated sources outside production."""
    return _debug_source(request, settings, "record_source", InMemoryRecordSource)


def get_debug_passive_source(
    request: Request, settings: Annotated[Settings, Depends(get_settings)]
) -> SimulatedPassiveSource:
    """The hand-driven passive monitor, gated like the record store."""
    return _debug_source(request, settings, "passive_source", SimulatedPassiveSource)


# Annotated shortcuts for route signatures
Monitor = Annotated[HealthMonitor, Depends(get_monitor)]
DebugRecordSource = Annotated[InMemoryRecordSource, Depends(get_debug_record_source)]
DebugPassiveSource = Annotated[SimulatedPassiveSource, Depends(get_debug_passive_source)]
AppSettings = Annotated[Settings, Depends(get_settings)]
