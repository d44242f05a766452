"""Unit tests for step energy aggregation."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from record_job_energy.data.models import (
    EnergySample,
    LaunchMode,
    ProcessEnergyRecord,
    StepMetadata,
    Zone,
    ZoneReading,
)
from record_job_energy.errors import CounterResetError, SampleError
from record_job_energy.profiling.aggregate import (
    aggregate_step,
    load_process_records,
    node_proportion,
    zone_contribution,
)
from record_job_energy.profiling.artifacts import StepArtifacts

T0 = datetime(2024, 5, 1, 8, 0, 0, tzinfo=timezone.utc)


def _reading(name: str, start: int, finish: int, t_start: float = 0.0, t_finish: float = 10.0) -> ZoneReading:
    return ZoneReading(
        zone=Zone(path=f"/powercap/{name}", name=name.split("-->")),
        starting_energy=EnergySample(time=T0 + timedelta(seconds=t_start), energy=start),
        finishing_energy=EnergySample(time=T0 + timedelta(seconds=t_finish), energy=finish),
    )


def _record(node: str, proc_id: int, cpus: int, cores: int, *readings: ZoneReading) -> ProcessEnergyRecord:
    return ProcessEnergyRecord(
        node=node, num_cores=cores, job_id=99, step_id=1, proc_id=proc_id, cpus_per_task=cpus, zones=list(readings)
    )


def _info(num_procs: int) -> StepMetadata:
    return StepMetadata(job_id=99, step_id=1, task="solver in.dat", parallel_cmd=LaunchMode.SRUN, num_procs=num_procs)


def test_single_rank_example() -> None:
    rec = _record("node-a", 0, 2, 4, _reading("pkg", 100, 300), _reading("pkg-->core", 50, 150))
    agg = aggregate_step([rec], _info(1))

    node = agg.nodes["node-a"]
    assert node.zones == {"pkg": 0.0001, "pkg-->core": 0.00005}
    assert node.node_total == 0.00015
    assert agg.total == 0.00015
    assert agg.units == "Joules"
    assert (node.num_cores, node.num_procs, node.cores_used) == (4, 1, 2)
    assert node.start_time == T0
    assert node.finish_time == T0 + timedelta(seconds=10)


def test_proportion_and_rounding() -> None:
    rec = _record("n", 0, 1, 3)
    assert node_proportion(rec) == pytest.approx(1 / 3)
    # 1 J split three ways
    assert zone_contribution(_reading("pkg", 0, 1_000_000), 1 / 3) == 0.3333333


def _mixed_records() -> list[ProcessEnergyRecord]:
    return [
        _record("node-b", 0, 1, 3, _reading("pkg", 0, 1_000_000, 1, 9), _reading("dram", 10, 20, 1, 9)),
        _record("node-b", 1, 1, 3, _reading("pkg", 7, 2_000_003, 0, 11), _reading("dram", 5, 6, 0, 11)),
        _record("node-a", 2, 2, 7, _reading("pkg", 123, 777_777, 2, 5)),
        _record("node-a", 3, 3, 7, _reading("pkg", 9, 1_234_567, 3, 4), _reading("pkg-->core", 1, 99_999, 3, 4)),
    ]


def test_order_independence() -> None:
    records = _mixed_records()
    expected = aggregate_step(records, _info(4))
    for perm in itertools.permutations(records):
        assert aggregate_step(list(perm), _info(4)) == expected


def test_totals_are_consistent_across_nodes() -> None:
    agg = aggregate_step(_mixed_records(), _info(4))
    assert list(agg.nodes) == ["node-a", "node-b"]
    assert sum(n.node_total for n in agg.nodes.values()) == agg.total
    for node in agg.nodes.values():
        assert node.node_total == pytest.approx(sum(node.zones.values()), abs=1e-9)

    b = agg.nodes["node-b"]
    assert (b.num_procs, b.cores_used, b.num_cores) == (2, 2, 3)
    assert b.start_time == T0
    assert b.finish_time == T0 + timedelta(seconds=11)
    assert agg.nodes["node-a"].cores_used == 5


def test_oversubscribed_node_is_not_rejected() -> None:
    records = [_record("n", i, 4, 4, _reading("pkg", 0, 4_000_000)) for i in range(2)]
    agg = aggregate_step(records, _info(2))
    assert agg.nodes["n"].cores_used == 8
    assert agg.total == 8.0


def test_node_without_zones() -> None:
    agg = aggregate_step([_record("bare", 0, 1, 2)], _info(1))
    assert agg.nodes["bare"].zones == {}
    assert agg.nodes["bare"].node_total == 0.0
    assert agg.total == 0.0


def test_negative_delta_and_missing_sample() -> None:
    with pytest.raises(CounterResetError):
        aggregate_step([_record("n", 0, 1, 1, _reading("pkg", 500, 100))], _info(1))

    partial = ZoneReading(zone=Zone(path="/p", name=["pkg"]), starting_energy=EnergySample(time=T0, energy=1))
    with pytest.raises(SampleError):
        zone_contribution(partial, 1.0)


def test_load_process_records(tmp_path: Path) -> None:
    art = StepArtifacts.from_step_dir(tmp_path)
    for rec in _mixed_records():
        art.write_record(rec)
    loaded = load_process_records(art)
    assert [r.proc_id for r in loaded] == [0, 1, 2, 3]
    assert aggregate_step(loaded, _info(4)) == aggregate_step(_mixed_records(), _info(4))

    (tmp_path / "4").write_text("node: [unterminated\n", encoding="utf-8")
    with pytest.raises(SampleError, match="cannot read energy record"):
        load_process_records(art)


def test_record_missing_fields_is_sample_error(tmp_path: Path) -> None:
    (tmp_path / "0").write_text("node: n\nnum_cores: 4\n", encoding="utf-8")
    with pytest.raises(SampleError):
        load_process_records(StepArtifacts.from_step_dir(tmp_path))
