"""Concrete collaborator implementations.

Available sources:
    SimulatedMeasurementSource — exercise session SDK stand-in
    SimulatedPassiveSource     — passive activity monitor stand-in
    InMemoryRecordSource       — historical record store stand-in
"""

from wearmonitor.telemetry.sources.simulated import (
    InMemoryRecordSource,
    SimulatedMeasurementSource,
    SimulatedPassiveSource,
)

__all__ = [
    "InMemoryRecordSource",
    "SimulatedMeasurementSource",
    "SimulatedPassiveSource",
]
