"""End-to-end tests for the per-rank recorder."""

from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest

from record_job_energy.data.models import LaunchMode
from record_job_energy.errors import JobCancelledError
from record_job_energy.profiling.artifacts import StepArtifacts
from record_job_energy.profiling.vendor import cancel as cancel_mod
from record_job_energy.runners import record_job_energy as recorder


def _config(tmp_path: Path, powercap_root: Path, **extra: object) -> Path:
    values = {
        "out_directory": str(tmp_path / "out"),
        "powercap_root": str(powercap_root),
        "timeout": 5,
        "poll_interval": 0.05,
        "cancel_command": "no-such-cancel-tool",
    }
    values.update(extra)
    f = tmp_path / "recorder.yaml"
    f.write_text("".join(f"{k}: '{v}'\n" if isinstance(v, str) else f"{k}: {v}\n" for k, v in values.items()), encoding="utf-8")
    return f


def _env(base: dict[str, str], config: Path, **overrides: str) -> dict[str, str]:
    return {**base, "RECORD_JOB_ENERGY_CONFIG": str(config), **overrides}


@pytest.fixture(autouse=True)
def no_scheduler(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cancel_mod.shutil, "which", lambda name: None)


@pytest.fixture(autouse=True)
def four_core_node(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(recorder, "node_core_count", lambda: 4)
    monkeypatch.setattr(recorder, "node_name", lambda: "node-a")


def test_single_rank_records_and_totals(tmp_path: Path, pkg_tree: Path, srun_env: dict[str, str]) -> None:
    pkg = pkg_tree / "pkg" / "energy_uj"
    core = pkg_tree / "pkg" / "core-zone" / "energy_uj"
    code = f"open({str(pkg)!r}, 'w').write('300'); open({str(core)!r}, 'w').write('150'); print('task ran')"
    env = _env(srun_env, _config(tmp_path, pkg_tree))
    out = io.StringIO()

    assert recorder.run([sys.executable, "-c", code], env=env, out=out) == 0
    assert "task ran" in out.getvalue()

    art = StepArtifacts.from_ids(tmp_path / "out", 4242, 0)
    info = art.read_step_info()
    assert info.parallel_cmd is LaunchMode.SRUN
    assert info.num_procs == 1
    assert info.task.startswith(sys.executable)

    record = art.read_record(0)
    assert record.cpus_per_task == 2
    assert [r.zone.display_name for r in record.zones] == ["pkg", "pkg-->core"]

    totals = art.read_totals()
    assert totals.nodes["node-a"].zones == {"pkg": 0.0001, "pkg-->core": 0.00005}
    assert totals.nodes["node-a"].node_total == 0.00015
    assert totals.total == 0.00015
    assert totals.step_info == info
    assert (art.step_dir / "summary.md").is_file()
    assert (art.step_dir / "record_job_energy.log").is_file()


def test_two_ranks_share_a_step(tmp_path: Path, pkg_tree: Path, srun_env: dict[str, str]) -> None:
    env = _env(srun_env, _config(tmp_path, pkg_tree), SLURM_NTASKS="2", SLURM_CPUS_PER_TASK="1")
    task = [sys.executable, "-c", "pass"]

    out1 = io.StringIO()
    assert recorder.run(task, env={**env, "SLURM_PROCID": "1"}, out=out1) == 0
    assert out1.getvalue() == "record-job-energy: process 1 finished on node-a\n"

    assert recorder.run(task, env=env, out=io.StringIO()) == 0
    art = StepArtifacts.from_ids(tmp_path / "out", 4242, 0)
    assert art.rank_names() == ["0", "1"]
    node = art.read_totals().nodes["node-a"]
    assert (node.num_procs, node.cores_used, node.num_cores) == (2, 2, 4)


def test_root_times_out_when_a_rank_is_missing(tmp_path: Path, pkg_tree: Path, srun_env: dict[str, str]) -> None:
    env = _env(srun_env, _config(tmp_path, pkg_tree, timeout=0), SLURM_NTASKS="2")
    with pytest.raises(JobCancelledError, match="in process 0 - timeout waiting for processes to complete"):
        recorder.run([sys.executable, "-c", "pass"], env=env, out=io.StringIO())
    art = StepArtifacts.from_ids(tmp_path / "out", 4242, 0)
    assert not art.path("totalled_data").exists()


def test_failing_task_cancels(tmp_path: Path, pkg_tree: Path, srun_env: dict[str, str]) -> None:
    env = _env(srun_env, _config(tmp_path, pkg_tree))
    with pytest.raises(JobCancelledError, match=r"failed \(exit status 3\)"):
        recorder.run([sys.executable, "-c", "raise SystemExit(3)"], env=env, out=io.StringIO())
    art = StepArtifacts.from_ids(tmp_path / "out", 4242, 0)
    assert art.rank_names() == []


def test_missing_powercap_root_cancels(tmp_path: Path, srun_env: dict[str, str]) -> None:
    env = _env(srun_env, _config(tmp_path, tmp_path / "no-powercap"))
    with pytest.raises(JobCancelledError, match="powercap root"):
        recorder.run([sys.executable, "-c", "pass"], env=env, out=io.StringIO())


def test_outside_a_job(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(JobCancelledError, match="^Record Job Energy error - run this executable only"):
        recorder.run(["hostname"], env={}, out=io.StringIO())


def test_no_task(tmp_path: Path, pkg_tree: Path, srun_env: dict[str, str]) -> None:
    env = _env(srun_env, _config(tmp_path, pkg_tree))
    with pytest.raises(JobCancelledError, match="no task provided"):
        recorder.run(["-t=5"], env=env, out=io.StringIO())


def test_help_on_root_only(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, srun_env: dict[str, str]) -> None:
    monkeypatch.chdir(tmp_path)
    out = io.StringIO()
    assert recorder.run(["--help"], env=srun_env, out=out) == 0
    assert out.getvalue().startswith("RECORD-JOB-ENERGY HELP")
    assert str(tmp_path / "record-job-energy-data") in out.getvalue()
    assert list(tmp_path.iterdir()) == []

    out = io.StringIO()
    assert recorder.run(["--help", "hostname"], env={**srun_env, "SLURM_PROCID": "3"}, out=out) == 0
    assert out.getvalue() == ""

    out = io.StringIO()
    assert recorder.run(["--help"], env={}, out=out) == 0
    assert "RECORD-JOB-ENERGY HELP" in out.getvalue()


def test_invalid_timeout_cancels_with_rank(srun_env: dict[str, str]) -> None:
    with pytest.raises(JobCancelledError, match="^Record Job Energy error in process 0 - invalid configuration"):
        recorder.run(["-t=soon", "hostname"], env=srun_env, out=io.StringIO())


def test_missing_config_file_inside_a_job_cancels(tmp_path: Path, srun_env: dict[str, str]) -> None:
    missing = tmp_path / "gone.yaml"
    env = {**srun_env, "SLURM_PROCID": "1", "SLURM_NTASKS": "2", "RECORD_JOB_ENERGY_CONFIG": str(missing)}
    with pytest.raises(JobCancelledError, match="in process 1 - invalid configuration"):
        recorder.run(["hostname"], env=env, out=io.StringIO())


def test_help_ignores_invalid_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, srun_env: dict[str, str]) -> None:
    monkeypatch.chdir(tmp_path)
    out = io.StringIO()
    assert recorder.run(["--timeout=soon", "--help"], env=srun_env, out=out) == 0
    assert out.getvalue().startswith("RECORD-JOB-ENERGY HELP")
    assert "default value is 600." in out.getvalue()


def test_invalid_cpus_per_task_cancels(tmp_path: Path, pkg_tree: Path, srun_env: dict[str, str]) -> None:
    env = _env(srun_env, _config(tmp_path, pkg_tree), SLURM_CPUS_PER_TASK="0")
    with pytest.raises(JobCancelledError, match="in process 0 - ValueError: .*cpus_per_task"):
        recorder.run([sys.executable, "-c", "pass"], env=env, out=io.StringIO())


def test_summary_write_failure_cancels(
    tmp_path: Path, pkg_tree: Path, srun_env: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> None:
    def _fail(*args: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(recorder, "write_energy_summary", _fail)
    env = _env(srun_env, _config(tmp_path, pkg_tree))
    with pytest.raises(JobCancelledError, match="OSError: disk full"):
        recorder.run([sys.executable, "-c", "pass"], env=env, out=io.StringIO())
    assert StepArtifacts.from_ids(tmp_path / "out", 4242, 0).path("totalled_data").is_file()


def test_binary_task_output_is_relayed(tmp_path: Path, pkg_tree: Path, srun_env: dict[str, str]) -> None:
    env = _env(srun_env, _config(tmp_path, pkg_tree))
    out = io.StringIO()
    code = "import sys; sys.stdout.buffer.write(b'\\xff\\xfe binary\\n')"
    assert recorder.run([sys.executable, "-c", code], env=env, out=out) == 0
    assert "binary" in out.getvalue()
    assert StepArtifacts.from_ids(tmp_path / "out", 4242, 0).path("totalled_data").is_file()


def test_main_reports_cancellation(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    def _fail(argv: list[str]) -> int:
        raise JobCancelledError("Record Job Energy error - boom")

    monkeypatch.setattr(recorder, "run", _fail)
    assert recorder.main(["x"]) == recorder.EXIT_FATAL
    assert "Record Job Energy error - boom" in capsys.readouterr().err
