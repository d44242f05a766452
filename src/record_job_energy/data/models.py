"""Domain data models for job energy recording.

This module defines `attrs`-based data models for the energy recording
domain. Records are serialized to and from YAML through the shared `cattrs`
converter in :mod:`record_job_energy.data.convert`.

Classes
-------
LaunchMode
    Parallel launch convention a process was started under.
Zone
    A measurable powercap zone and its hierarchical name.
EnergySample
    One timestamped counter reading.
ZoneReading
    A zone with its starting and finishing samples.
ProcessEnergyRecord
    Everything one rank measured; written once per rank per step.
StepMetadata
    Provenance for a step, written by rank 0.
AggregatedNodeReport
    Per-node energy accounting.
GlobalAggregate
    Step-wide energy report produced by rank 0.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from attrs import Attribute, define, field, frozen
from attrs.validators import ge, in_, instance_of, optional

ZONE_NAME_SEPARATOR = "-->"

#: Divisor converting a counter unit to joules.
UNIT_DIVISORS: Dict[str, int] = {"uj": 1_000_000, "mj": 1_000, "j": 1}


class LaunchMode(str, Enum):
    """Parallel launch convention.

    ``SRUN`` is a plain Slurm step (rank from ``SLURM_PROCID``), ``INTEL_MPI``
    uses the PMI variables and ``OPEN_MPI`` the ``OMPI_COMM_WORLD_*`` ones.
    """

    SRUN = "srun"
    INTEL_MPI = "intel_mpi"
    OPEN_MPI = "open_mpi"


def _non_empty_name(_instance: object, attribute: Attribute, value: Tuple[str, ...]) -> None:
    """Ensure a zone name has at least one string component."""

    if not value:
        raise ValueError(f"{attribute.name} must have at least one component")
    for part in value:
        if not isinstance(part, str):
            raise ValueError(f"{attribute.name} components must be strings, got {part!r}")


@frozen(kw_only=True)
class Zone:
    """A powercap zone.

    Parameters
    ----------
    path : str
        Directory of the zone (holds the energy counter file).
    name : tuple of str
        Hierarchical name, outermost component first.
    """

    path: str = field(validator=[instance_of(str)])
    name: Tuple[str, ...] = field(converter=tuple, validator=[_non_empty_name])

    @property
    def display_name(self) -> str:
        """Name components joined with ``-->`` (e.g. ``intel-rapl-->package-0``)."""

        return ZONE_NAME_SEPARATOR.join(self.name)


@define(kw_only=True)
class EnergySample:
    """A single counter reading."""

    time: datetime = field(validator=[instance_of(datetime)])
    energy: int = field(validator=[instance_of(int), ge(0)])
    unit: str = field(default="uj", validator=[in_(tuple(UNIT_DIVISORS))])

    def to_joules(self, value: Optional[int] = None) -> float:
        """Convert ``value`` (default: this sample's energy) from the sample unit to joules."""

        raw = self.energy if value is None else value
        return raw / UNIT_DIVISORS[self.unit]


@define(kw_only=True)
class ZoneReading:
    """A zone plus its per-phase samples.

    The sampler fills ``starting_energy`` and ``finishing_energy`` in two
    separate passes; the zone itself never changes.
    """

    zone: Zone = field(validator=[instance_of(Zone)])
    starting_energy: Optional[EnergySample] = field(default=None, validator=[optional(instance_of(EnergySample))])
    finishing_energy: Optional[EnergySample] = field(default=None, validator=[optional(instance_of(EnergySample))])

    @property
    def complete(self) -> bool:
        return self.starting_energy is not None and self.finishing_energy is not None


@define(kw_only=True)
class ProcessEnergyRecord:
    """Energy measured by one rank.

    Parameters
    ----------
    node : str
        Hostname the rank ran on.
    num_cores : int
        Logical cores of the node as reported by the OS (not by the launcher,
        whose view may be masked by its configuration).
    job_id, step_id, proc_id : int
        Scheduler job, step and zero-based rank.
    cpus_per_task : int
        Cores allocated to this rank.
    zones : list of ZoneReading
        Complete readings for every zone of the node.
    """

    node: str = field(validator=[instance_of(str)])
    num_cores: int = field(validator=[instance_of(int), ge(1)])
    job_id: int = field(validator=[instance_of(int)])
    step_id: int = field(validator=[instance_of(int), ge(0)])
    proc_id: int = field(validator=[instance_of(int), ge(0)])
    cpus_per_task: int = field(validator=[instance_of(int), ge(1)])
    zones: list[ZoneReading] = field(factory=list)


@define(kw_only=True)
class StepMetadata:
    """Step provenance written by rank 0 before the task starts."""

    job_id: int = field(validator=[instance_of(int)])
    step_id: int = field(validator=[instance_of(int), ge(0)])
    task: str = field(validator=[instance_of(str)])
    parallel_cmd: LaunchMode = field(converter=LaunchMode)
    num_procs: int = field(validator=[instance_of(int), ge(1)])


@define(kw_only=True)
class AggregatedNodeReport:
    """Energy accounting for one node.

    ``cores_used`` may exceed ``num_cores`` (oversubscription) or fall short of
    it (cores outside the job); no validation is done on that relation.
    """

    num_cores: int = field(validator=[instance_of(int)])
    num_procs: int = field(default=0, validator=[instance_of(int)])
    cores_used: int = field(default=0, validator=[instance_of(int)])
    start_time: Optional[datetime] = field(default=None)
    finish_time: Optional[datetime] = field(default=None)
    zones: Dict[str, float] = field(factory=dict)
    node_total: float = field(default=0.0, validator=[instance_of(float)])


@define(kw_only=True)
class GlobalAggregate:
    """Step-wide energy report (``totalled_data``)."""

    total: float = field(validator=[instance_of(float)])
    units: str = field(default="Joules", validator=[instance_of(str)])
    nodes: Dict[str, AggregatedNodeReport] = field(factory=dict)
    step_info: StepMetadata = field(validator=[instance_of(StepMetadata)])
