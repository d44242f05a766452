"""Per-rank energy recorder (CLI entry).

Every rank of a parallel step runs this wrapper around the real task::

    srun -n 4 record-job-energy --directory=/shared/energy ./solver input.dat

Flow per rank
-------------
1) Resolve the launcher role (rank, size, launch mode) and the job/step ids.
2) Rank 0 creates the step directory and writes ``step_info``.
3) Scan powercap zones and sample their counters.
4) Run the task, streaming its output.
5) Sample again and publish the rank's record (its completion signal).
6) Rank 0 waits for all records, aggregates them into ``totalled_data`` and
   renders ``summary.md``.

Any failure, configuration errors included, goes through :func:`cancel_job`,
which cancels the Slurm job and exits non-zero.
"""

from __future__ import annotations

import logging
import sys
from typing import Mapping, Optional, Sequence, TextIO

from attrs import frozen

from record_job_energy.config import DEFAULT_CANCEL_COMMAND, ConfigError, RecorderConfig, load_config
from record_job_energy.data.models import GlobalAggregate, ProcessEnergyRecord, StepMetadata
from record_job_energy.errors import EnergyRecordError, JobCancelledError, NotInJobError, TaskFailureError
from record_job_energy.profiling.aggregate import aggregate_step, load_process_records
from record_job_energy.profiling.artifacts import LOG_NAME, SUMMARY_NAME, StepArtifacts
from record_job_energy.profiling.barrier import CompletionBarrier
from record_job_energy.profiling.export import write_energy_summary
from record_job_energy.profiling.sampler import Phase, read_energy, readings_for
from record_job_energy.profiling.vendor.cancel import cancel_job
from record_job_energy.profiling.vendor.launch import join_argv, run_task
from record_job_energy.profiling.vendor.slurm import (
    ExecutionRole,
    node_core_count,
    node_name,
    resolve_cpus_per_task,
    resolve_job_id,
    resolve_role,
    resolve_step_id,
)
from record_job_energy.profiling.zones import scan_zones
from record_job_energy.runners.options import RunOptions, help_text, parse_options
from record_job_energy.utils.paths import job_directory

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

EXIT_OK = 0
EXIT_FATAL = 1


@frozen(kw_only=True)
class RunContext:
    """Everything a rank needs once startup is done."""

    role: ExecutionRole
    config: RecorderConfig
    task: tuple[str, ...]
    job_id: int
    step_id: int
    artifacts: StepArtifacts


def setup_logging(level: str, proc_id: Optional[int] = None) -> None:
    """Configure console logging on stderr, prefixed with the rank when known."""

    fmt = LOG_FORMAT if proc_id is None else f"[rank {proc_id}] {LOG_FORMAT}"
    logging.captureWarnings(True)
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=fmt, stream=sys.stderr)


def attach_file_log(artifacts: StepArtifacts) -> Optional[logging.Handler]:
    """Mirror log records into the step directory (rank 0 only).

    Returns the handler so the caller can detach it, or ``None`` when the log
    file cannot be opened.
    """

    try:
        fh = logging.FileHandler(artifacts.path(LOG_NAME), encoding="utf-8")
    except OSError as exc:
        logger.warning("Cannot write log file in %s: %s", artifacts.step_dir, exc)
        return None
    fh.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(fh)
    return fh


def build_context(
    options: RunOptions, config: RecorderConfig, role: ExecutionRole, env: Optional[Mapping[str, str]] = None
) -> RunContext:
    """Resolve job/step ids and the step directory for this rank."""

    job_id = resolve_job_id(env)
    step_id = resolve_step_id(job_directory(config.out_directory, job_id), role.launch_mode, env)
    if not options.task:
        raise TaskFailureError("no task provided - aborting")
    return RunContext(
        role=role,
        config=config,
        task=options.task,
        job_id=job_id,
        step_id=step_id,
        artifacts=StepArtifacts.from_ids(config.out_directory, job_id, step_id),
    )


def record_step_info(ctx: RunContext) -> StepMetadata:
    """Create the step directory and write ``step_info`` (rank 0)."""

    ctx.artifacts.ensure_dir()
    info = StepMetadata(
        job_id=ctx.job_id,
        step_id=ctx.step_id,
        task=join_argv(ctx.task),
        parallel_cmd=ctx.role.launch_mode,
        num_procs=ctx.role.num_procs,
    )
    ctx.artifacts.write_step_info(info)
    logger.info("Step %d.%d: %d processes via %s", ctx.job_id, ctx.step_id, info.num_procs, info.parallel_cmd.value)
    return info


def measure_task(ctx: RunContext, env: Optional[Mapping[str, str]] = None, out: Optional[TextIO] = None) -> ProcessEnergyRecord:
    """Sample zones around the task and return this rank's record.

    Raises
    ------
    TaskFailureError
        If the task exits unsuccessfully.
    """

    cfg = ctx.config
    zones = scan_zones(cfg.powercap_root, counter_file=cfg.counter_file, label_file=cfg.label_file)
    readings = readings_for(zones)

    read_energy(readings, Phase.START, counter_file=cfg.counter_file)
    result = run_task(ctx.task, out=out)
    if not result.succeeded:
        raise TaskFailureError(f"task {result.command_line} failed (exit status {result.returncode})")
    read_energy(readings, Phase.FINISH, counter_file=cfg.counter_file)

    return ProcessEnergyRecord(
        node=node_name(),
        num_cores=node_core_count(),
        job_id=ctx.job_id,
        step_id=ctx.step_id,
        proc_id=ctx.role.proc_id,
        cpus_per_task=resolve_cpus_per_task(env),
        zones=readings,
    )


def collect_totals(ctx: RunContext, step_info: StepMetadata) -> GlobalAggregate:
    """Wait for every rank, then aggregate and write the step report (rank 0)."""

    barrier = CompletionBarrier(
        ctx.artifacts.step_dir,
        ctx.role.num_procs,
        timeout=ctx.config.timeout,
        interval=ctx.config.poll_interval,
    )
    barrier.wait()
    aggregate = aggregate_step(load_process_records(ctx.artifacts), step_info)
    path = ctx.artifacts.write_totals(aggregate)
    logger.info("Wrote step totals to %s (%.7f %s)", path, aggregate.total, aggregate.units)
    if ctx.config.write_summary:
        write_energy_summary(aggregate, str(ctx.artifacts.path(SUMMARY_NAME)))
    return aggregate


def run_rank(ctx: RunContext, env: Optional[Mapping[str, str]] = None, out: Optional[TextIO] = None) -> Optional[GlobalAggregate]:
    """Measure the task for this rank; rank 0 also collects the step totals.

    Returns
    -------
    GlobalAggregate or None
        The step report on rank 0, ``None`` on other ranks.
    """

    out = sys.stdout if out is None else out
    fh: Optional[logging.Handler] = None
    try:
        step_info: Optional[StepMetadata] = None
        if ctx.role.is_root:
            step_info = record_step_info(ctx)
            fh = attach_file_log(ctx.artifacts)

        record = measure_task(ctx, env, out)
        ctx.artifacts.ensure_dir()
        ctx.artifacts.write_record(record)

        if step_info is None:
            out.write(f"record-job-energy: process {ctx.role.proc_id} finished on {record.node}\n")
            out.flush()
            return None
        return collect_totals(ctx, step_info)
    finally:
        if fh is not None:
            logging.getLogger().removeHandler(fh)
            fh.close()


def render_help(options: RunOptions, env: Optional[Mapping[str, str]] = None) -> str:
    """Return the usage text with the effective defaults.

    Falls back to the built-in defaults when the configuration is invalid, so
    ``--help`` always prints.
    """

    try:
        config = load_config(options.config, options.config_overrides(), env)
    except ConfigError:
        config = load_config(env={})
    return help_text(out_directory=config.out_directory, timeout=config.timeout, interval=config.poll_interval)


def run(
    argv: Sequence[str],
    env: Optional[Mapping[str, str]] = None,
    out: Optional[TextIO] = None,
) -> int:
    """Run the recorder for this rank and return the process exit code.

    Raises
    ------
    JobCancelledError
        On any failure, after a job cancellation was requested.
    """

    out = sys.stdout if out is None else out
    options = parse_options(argv)
    role: Optional[ExecutionRole] = None
    cancel_command = DEFAULT_CANCEL_COMMAND
    try:
        if options.help:
            try:
                role = resolve_role(env)
            except NotInJobError:
                role = None
            # outside a job there is no rank to defer to
            if role is None or role.is_root:
                out.write(render_help(options, env))
            return EXIT_OK

        role = resolve_role(env)
        config = load_config(options.config, options.config_overrides(), env)
        cancel_command = config.cancel_command
        setup_logging(config.log_level, role.proc_id)
        run_rank(build_context(options, config, role, env), env, out)
        return EXIT_OK
    except JobCancelledError:
        raise
    except (EnergyRecordError, ConfigError) as exc:
        message = str(exc)
    except Exception as exc:
        logger.exception("Unexpected recorder failure")
        message = f"{type(exc).__name__}: {exc}"
    cancel_job(
        message,
        role.proc_id if role is not None else None,
        env=env,
        cancel_command=cancel_command,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Console entry point."""

    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        return run(argv)
    except JobCancelledError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_FATAL


if __name__ == "__main__":
    raise SystemExit(main())
