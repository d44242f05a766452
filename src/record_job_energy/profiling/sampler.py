"""Zone energy sampling.

Functions
---------
readings_for
    Wrap zones in empty :class:`ZoneReading` holders.
read_energy
    Take one timestamped counter reading per zone for a phase.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable

from record_job_energy.data.models import EnergySample, Zone, ZoneReading
from record_job_energy.errors import CounterResetError, SampleError
from record_job_energy.profiling.zones import read_first_line

logger = logging.getLogger(__name__)

COUNTER_UNIT = "uj"


class Phase(str, Enum):
    """Sampling phase relative to the task run."""

    START = "start"
    FINISH = "finish"


def readings_for(zones: Iterable[Zone]) -> list[ZoneReading]:
    """Return one empty reading holder per zone."""

    return [ZoneReading(zone=z) for z in zones]


def read_counter(zone: Zone, counter_file: str = "energy_uj") -> int:
    """Return the current counter value of ``zone``.

    Raises
    ------
    SampleError
        If the counter file is missing, unreadable or not an integer.
    """

    path = Path(zone.path) / counter_file
    try:
        raw = read_first_line(path)
    except OSError as exc:
        raise SampleError(f"cannot read energy counter of zone {zone.path}: {exc}") from exc
    try:
        value = int(raw)
    except ValueError:
        raise SampleError(f"energy counter of zone {zone.path} is not an integer: {raw!r}") from None
    if value < 0:
        raise SampleError(f"energy counter of zone {zone.path} is negative: {value}")
    return value


def read_energy(readings: list[ZoneReading], phase: Phase | str, *, counter_file: str = "energy_uj") -> list[ZoneReading]:
    """Sample every zone and store the result under ``phase``.

    Parameters
    ----------
    readings : list of ZoneReading
        Holders created by :func:`readings_for`; updated in place.
    phase : Phase or str
        ``'start'`` fills ``starting_energy``, ``'finish'`` fills
        ``finishing_energy``.
    counter_file : str, default 'energy_uj'
        Counter file name inside each zone directory.

    Returns
    -------
    list of ZoneReading
        The same ``readings`` list, for chaining.

    Raises
    ------
    SampleError
        If a counter cannot be read.
    CounterResetError
        If a finishing value is below the starting value of the same zone;
        counter wraparound is not corrected.
    """

    phase = Phase(phase)
    for reading in readings:
        sample = EnergySample(
            time=datetime.now(timezone.utc),
            energy=read_counter(reading.zone, counter_file),
            unit=COUNTER_UNIT,
        )
        if phase is Phase.START:
            reading.starting_energy = sample
            continue
        start = reading.starting_energy
        if start is not None and sample.energy < start.energy:
            raise CounterResetError(
                f"energy counter of zone {reading.zone.path} went backwards "
                f"({start.energy} -> {sample.energy}); counter wraparound is not supported"
            )
        reading.finishing_energy = sample
    logger.debug("Sampled %d zones (%s)", len(readings), phase.value)
    return readings
