"""WearMonitor: live wearable telemetry aggregation service."""

__version__ = "0.1.0"
