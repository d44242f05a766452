"""Aggregation of per-rank energy records into a step report.

Each rank's share of a node's zone energy is its core allocation relative to
the node's logical cores (``cpus_per_task / num_cores``). This linear model
assumes uniform per-core power draw and ignores idle or background draw.

Contributions are rounded to 7 decimal places and accumulated as integer
multiples of 1e-7 J, so the result does not depend on the order in which
records are read.

Functions
---------
node_proportion
    Fraction of a node attributed to one rank.
zone_contribution
    Joules of one zone attributed to one rank.
aggregate_step
    Combine records into a :class:`GlobalAggregate`.
load_process_records
    Read every rank record of a step directory.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from attrs import define, field
from cattrs.errors import BaseValidationError
from ruamel.yaml.error import YAMLError  # type: ignore[import-untyped]

from record_job_energy.data.models import (
    AggregatedNodeReport,
    GlobalAggregate,
    ProcessEnergyRecord,
    StepMetadata,
    ZoneReading,
)
from record_job_energy.errors import CounterResetError, SampleError
from record_job_energy.profiling.artifacts import StepArtifacts

logger = logging.getLogger(__name__)

DECIMALS = 7
_QUANTUM = 10**DECIMALS


def node_proportion(record: ProcessEnergyRecord) -> float:
    """Return ``cpus_per_task / num_cores`` for ``record``."""

    return record.cpus_per_task / record.num_cores


def zone_contribution(reading: ZoneReading, proportion: float) -> float:
    """Return the joules of ``reading`` attributed at ``proportion``, rounded to 7 places.

    Raises
    ------
    SampleError
        If a sample is missing.
    CounterResetError
        If the finishing value is below the starting value.
    """

    start, finish = reading.starting_energy, reading.finishing_energy
    if start is None or finish is None:
        raise SampleError(f"zone {reading.zone.path} is missing a starting or finishing sample")
    delta = finish.energy - start.energy
    if delta < 0:
        raise CounterResetError(
            f"zone {reading.zone.path} reports negative energy ({start.energy} -> {finish.energy}); "
            "counter wraparound is not supported"
        )
    return round(start.to_joules(delta) * proportion, DECIMALS)


@define
class _NodeAccumulator:
    num_cores: int
    num_procs: int = 0
    cores_used: int = 0
    start_time: Optional[datetime] = None
    finish_time: Optional[datetime] = None
    zones: dict[str, int] = field(factory=dict)

    def add(self, record: ProcessEnergyRecord) -> None:
        self.num_cores = record.num_cores
        self.num_procs += 1
        self.cores_used += record.cpus_per_task
        proportion = node_proportion(record)
        for reading in record.zones:
            joules = zone_contribution(reading, proportion)
            name = reading.zone.display_name
            self.zones[name] = self.zones.get(name, 0) + round(joules * _QUANTUM)
            # zone_contribution has checked both samples
            started = reading.starting_energy.time  # type: ignore[union-attr]
            finished = reading.finishing_energy.time  # type: ignore[union-attr]
            if self.start_time is None or started < self.start_time:
                self.start_time = started
            if self.finish_time is None or finished > self.finish_time:
                self.finish_time = finished

    def report(self) -> AggregatedNodeReport:
        return AggregatedNodeReport(
            num_cores=self.num_cores,
            num_procs=self.num_procs,
            cores_used=self.cores_used,
            start_time=self.start_time,
            finish_time=self.finish_time,
            zones={name: q / _QUANTUM for name, q in sorted(self.zones.items())},
            node_total=sum(self.zones.values()) / _QUANTUM,
        )


def aggregate_step(records: Iterable[ProcessEnergyRecord], step_info: StepMetadata) -> GlobalAggregate:
    """Combine rank records into the step's energy report.

    Parameters
    ----------
    records : iterable of ProcessEnergyRecord
        Every record of the step, in any order.
    step_info : StepMetadata
        Embedded in the result for provenance.

    Returns
    -------
    GlobalAggregate
        Nodes are keyed by hostname in sorted order; ``total`` is the sum of
        the node totals in that order.
    """

    acc: dict[str, _NodeAccumulator] = {}
    count = 0
    for record in records:
        node = acc.setdefault(record.node, _NodeAccumulator(num_cores=record.num_cores))
        node.add(record)
        count += 1

    nodes = {name: acc[name].report() for name in sorted(acc)}
    total = sum((n.node_total for n in nodes.values()), 0.0)
    logger.info("Aggregated %d records over %d nodes: %.7f J", count, len(nodes), total)
    return GlobalAggregate(total=total, units="Joules", nodes=nodes, step_info=step_info)


def load_process_records(artifacts: StepArtifacts) -> list[ProcessEnergyRecord]:
    """Read every rank record currently in the step directory, ordered by rank.

    Raises
    ------
    SampleError
        If a record cannot be read or does not match the record schema.
    """

    records: list[ProcessEnergyRecord] = []
    for name in artifacts.rank_names():
        try:
            records.append(artifacts.read_record(name))
        except (OSError, ValueError, TypeError, KeyError, YAMLError, BaseValidationError) as exc:
            raise SampleError(f"cannot read energy record {artifacts.path(name)}: {exc}") from exc
    return records
