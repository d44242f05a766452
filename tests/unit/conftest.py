"""Shared fixtures: fake powercap trees and Slurm environments."""

from __future__ import annotations

from pathlib import Path

import pytest


def make_zone(root: Path, rel: str, energy: int, label: str | None = None) -> Path:
    """Create ``root/rel`` holding an ``energy_uj`` counter (and optional ``name``)."""

    d = root / rel
    d.mkdir(parents=True, exist_ok=True)
    (d / "energy_uj").write_text(f"{energy}\n", encoding="utf-8")
    if label is not None:
        (d / "name").write_text(f"{label}\n", encoding="utf-8")
    return d


@pytest.fixture()
def rapl_tree(tmp_path: Path) -> Path:
    """A powercap tree shaped like an Intel RAPL node with one package."""

    root = tmp_path / "powercap"
    (root / "intel-rapl").mkdir(parents=True)
    make_zone(root, "intel-rapl/intel-rapl:0", 1_000, "package-0")
    make_zone(root, "intel-rapl/intel-rapl:0/intel-rapl:0:0", 400, "core")
    make_zone(root, "intel-rapl/intel-rapl:0/intel-rapl:0:1", 200, "uncore")
    (root / "intel-rapl" / "intel-rapl:0" / "enabled").write_text("1\n", encoding="utf-8")
    return root


@pytest.fixture()
def pkg_tree(tmp_path: Path) -> Path:
    """Two zones named ``pkg`` and ``pkg-->core`` starting at 100 and 50 uJ."""

    root = tmp_path / "pkg-powercap"
    make_zone(root, "pkg", 100)
    make_zone(root, "pkg/core-zone", 50, "core")
    return root


@pytest.fixture()
def srun_env() -> dict[str, str]:
    return {
        "SLURM_JOB_ID": "4242",
        "SLURM_STEP_ID": "0",
        "SLURM_PROCID": "0",
        "SLURM_NTASKS": "1",
        "SLURM_CPUS_PER_TASK": "2",
    }
