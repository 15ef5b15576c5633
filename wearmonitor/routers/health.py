"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from wearmonitor.config import get_settings

router = APIRouter(tags=["system"])
logger = logging.getLogger("wearmonitor.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Reports ``degraded`` while the telemetry monitor is not running.
    """
    settings = get_settings()
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        logger.warning("Health check: telemetry monitor not running")

    return {
        "status": "healthy" if monitor is not None else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "source_mode": settings.source_mode,
        "session_state": monitor.session_state.value if monitor is not None else None,
        "observing": monitor.is_observing if monitor is not None else False,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
