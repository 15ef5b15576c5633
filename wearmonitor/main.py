"""WearMonitor API — FastAPI application entry point.

Run locally:
    uvicorn wearmonitor.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wearmonitor.config import Settings, get_settings
from wearmonitor.models.base import ErrorDetail
from wearmonitor.routers import health, telemetry
from wearmonitor.telemetry.config_loader import get_telemetry_config, load_telemetry_config
from wearmonitor.telemetry.errors import RegistrationFailed, SourceUnavailable, TelemetryError
from wearmonitor.telemetry.monitor import HealthMonitor
from wearmonitor.telemetry.sources import (
    InMemoryRecordSource,
    SimulatedMeasurementSource,
    SimulatedPassiveSource,
)

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("wearmonitor")

_ERROR_STATUS: dict[type[TelemetryError], int] = {
    SourceUnavailable: 503,
    RegistrationFailed: 502,
}


# ---------- Monitor wiring ----------

def build_monitor(app: FastAPI, settings: Settings) -> HealthMonitor:
    """Create the sources named by ``settings.source_mode`` and the monitor over them."""
    if settings.source_mode != "simulated":
        raise ValueError(f"Unsupported source_mode {settings.source_mode!r}")

    if settings.telemetry_config_path:
        config = load_telemetry_config(Path(settings.telemetry_config_path))
    else:
        config = get_telemetry_config()

    measurement = SimulatedMeasurementSource(
        tick_seconds=settings.simulated_tick_seconds or None
    )
    passive = SimulatedPassiveSource()
    records = InMemoryRecordSource()

    app.state.measurement_source = measurement
    app.state.passive_source = passive
    app.state.record_source = records
    return HealthMonitor(measurement, passive, records, config=config)


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger("wearmonitor").setLevel(settings.log_level.upper())
    logger.info(
        "Starting WearMonitor API v%s [%s, %s sources]",
        settings.app_version,
        settings.environment,
        settings.source_mode,
    )
    monitor = build_monitor(app, settings)
    app.state.monitor = monitor
    monitor.start_observing()
    yield
    await monitor.close()
    await app.state.measurement_source.close()
    app.state.monitor = None
    logger.info("WearMonitor API shut down")


# ---------- Error handling ----------

async def telemetry_exception_handler(request: Request, exc: TelemetryError) -> JSONResponse:
    """Map telemetry errors to a JSON body carrying the error code."""
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    logger.error(
        "%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message
    )
    return JSONResponse(
        status_code=status_code,
        content=ErrorDetail(detail=exc.message, code=exc.code).model_dump(),
    )


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="WearMonitor API",
        description=(
            "Live wearable telemetry: exercise metrics, passive activity state "
            "and last night's sleep in one continuously updated snapshot."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_exception_handler(TelemetryError, telemetry_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(telemetry.router, prefix=v1_prefix)

    return app


app = create_app()
