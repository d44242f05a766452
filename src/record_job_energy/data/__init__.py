"""Domain models and serialization helpers for ``record_job_energy``.

This package hosts the attrs-based records exchanged between ranks through
the shared step directory, plus the cattrs/YAML conversion used to persist
them.
"""

from __future__ import annotations

from .models import (
    AggregatedNodeReport,
    EnergySample,
    GlobalAggregate,
    LaunchMode,
    ProcessEnergyRecord,
    StepMetadata,
    Zone,
    ZoneReading,
)

__all__ = [
    "LaunchMode",
    "Zone",
    "EnergySample",
    "ZoneReading",
    "ProcessEnergyRecord",
    "StepMetadata",
    "AggregatedNodeReport",
    "GlobalAggregate",
]
