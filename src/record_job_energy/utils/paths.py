"""Path utilities.

Helpers to build the shared output tree ``<root>/<job_id>/<step_id>/``.
"""

from __future__ import annotations

from pathlib import Path


def job_directory(root: Path | str, job_id: int) -> Path:
    """Return ``<root>/<job_id>`` as an absolute path.

    Parameters
    ----------
    root : Path or str
        Output root; relative values are resolved against the working directory.
    job_id : int
        Scheduler job id.
    """

    return (Path(root) / str(int(job_id))).resolve()


def step_directory(root: Path | str, job_id: int, step_id: int) -> Path:
    """Return ``<root>/<job_id>/<step_id>`` as an absolute path."""

    return job_directory(root, job_id) / str(int(step_id))
