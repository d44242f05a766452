"""Offline re-aggregation of a recorded step.

Rebuilds ``totalled_data`` (and ``summary.md``) from the ``step_info`` and
rank records already present in a step directory, e.g. after rank 0 timed
out or when the attribution needs to be recomputed::

    record-job-energy-totals /shared/energy/123456/0
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from cattrs.errors import BaseValidationError
from ruamel.yaml.error import YAMLError  # type: ignore[import-untyped]

from record_job_energy.errors import EnergyRecordError
from record_job_energy.profiling.aggregate import aggregate_step, load_process_records
from record_job_energy.profiling.artifacts import SUMMARY_NAME, StepArtifacts
from record_job_energy.profiling.export import node_rows, write_energy_summary


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recompute the energy totals of a recorded job step.")
    parser.add_argument("step_dir", type=str, help="Step directory (<root>/<job_id>/<step_id>).")
    parser.add_argument(
        "--no-write",
        action="store_true",
        help="Only print the totals; leave totalled_data and summary.md untouched.",
    )
    parser.add_argument(
        "--allow-partial",
        action="store_true",
        help="Aggregate even if fewer records than step_info.num_procs are present.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(list(sys.argv[1:] if argv is None else argv))
    step_dir = Path(args.step_dir)
    if not step_dir.is_dir():
        print(f"ERROR: step directory not found: {step_dir}", file=sys.stderr)
        return 1

    artifacts = StepArtifacts.from_step_dir(step_dir)
    try:
        step_info = artifacts.read_step_info()
    except (OSError, ValueError, TypeError, KeyError, YAMLError, BaseValidationError) as exc:
        print(f"ERROR: cannot read step_info in {step_dir}: {exc}", file=sys.stderr)
        return 1

    try:
        records = load_process_records(artifacts)
    except EnergyRecordError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    if len(records) != step_info.num_procs and not args.allow_partial:
        print(
            f"ERROR: {len(records)} of {step_info.num_procs} process records present "
            "(use --allow-partial to aggregate anyway)",
            file=sys.stderr,
        )
        return 1

    try:
        aggregate = aggregate_step(records, step_info)
    except EnergyRecordError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if not args.no_write:
        try:
            artifacts.write_totals(aggregate)
        except EnergyRecordError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1
        write_energy_summary(aggregate, str(artifacts.path(SUMMARY_NAME)))

    print(f"Job {step_info.job_id} step {step_info.step_id}: {aggregate.total:.7f} {aggregate.units}")
    for row in node_rows(aggregate):
        print(f"  {row[0]}: {row[6]} {aggregate.units} ({row[2]} procs, {row[3]}/{row[1]} cores)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
