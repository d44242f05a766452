"""Step artifacts management.

This module lays out the per-step output directory shared by all ranks and
publishes files atomically, so that a file visible under its final name is
always complete.

Layout
------
::

    <root>/<job_id>/<step_id>/
        step_info              StepMetadata (rank 0)
        <proc_id>              ProcessEnergyRecord (one per rank)
        totalled_data          GlobalAggregate (rank 0, after the barrier)
        summary.md             Markdown rendering of totalled_data (rank 0)
        record_job_energy.log  rank 0 log

Classes
-------
StepArtifacts
    Manager for the step directory with read-only property access.

Functions
---------
publish_text
    Write a file through a temporary name and rename it into place.
is_rank_name
    Whether a directory entry names a rank record.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Type, TypeVar

from record_job_energy.data.convert import dump_yaml, read_yaml_file
from record_job_energy.data.models import GlobalAggregate, ProcessEnergyRecord, StepMetadata
from record_job_energy.errors import DirectoryError
from record_job_energy.utils.paths import step_directory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="StepArtifacts")

STEP_INFO_NAME = "step_info"
TOTALS_NAME = "totalled_data"
SUMMARY_NAME = "summary.md"
LOG_NAME = "record_job_energy.log"


def is_rank_name(name: str) -> bool:
    """Return True when ``name`` is a canonical non-negative integer (``'0'``, ``'12'``).

    Examples
    --------
    >>> [is_rank_name(n) for n in ("0", "07", "step_info", ".3.tmp")]
    [True, False, False, False]
    """

    return name.isascii() and name.isdigit() and str(int(name)) == name


def publish_text(path: Path, text: str) -> None:
    """Atomically create ``path`` with ``text``.

    The content is written and fsynced under a hidden temporary name in the
    same directory, then renamed onto ``path``. Temporary names start with a
    dot so they are never taken for rank records.
    """

    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class StepArtifacts:
    """Artifacts manager for one job step.

    The constructor takes no arguments; use :meth:`from_ids` or
    :meth:`from_step_dir`. Member variables are prefixed with ``m_`` and
    exposed through read-only properties.
    """

    def __init__(self) -> None:
        self.m_step_dir: Optional[Path] = None

    @property
    def step_dir(self) -> Path:
        """Step directory (read-only)."""

        if self.m_step_dir is None:
            raise RuntimeError("Step directory not set. Use from_ids() or from_step_dir().")
        return self.m_step_dir

    def set_step_dir(self, step_dir: Path | str) -> None:
        self.m_step_dir = Path(step_dir).resolve()

    @classmethod
    def from_ids(cls: Type[T], root: Path | str, job_id: int, step_id: int) -> T:
        """Factory for ``<root>/<job_id>/<step_id>`` (nothing is created)."""

        obj = cls()
        obj.set_step_dir(step_directory(root, job_id, step_id))
        return obj

    @classmethod
    def from_step_dir(cls: Type[T], step_dir: Path | str) -> T:
        obj = cls()
        obj.set_step_dir(step_dir)
        return obj

    def path(self, name: str) -> Path:
        return self.step_dir / name

    def record_path(self, proc_id: int) -> Path:
        return self.path(str(int(proc_id)))

    def ensure_dir(self) -> Path:
        """Create the step directory (and parents) if missing.

        Raises
        ------
        DirectoryError
            If the directory cannot be created.
        """

        try:
            self.step_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DirectoryError(f"Error while creating directory {self.step_dir} - {exc}") from exc
        return self.step_dir

    def rank_names(self) -> list[str]:
        """Return the names of the rank records currently visible, sorted by rank."""

        try:
            names = os.listdir(self.step_dir)
        except FileNotFoundError:
            return []
        return sorted((n for n in names if is_rank_name(n)), key=int)

    def _publish(self, p: Path, text: str) -> None:
        try:
            publish_text(p, text)
        except OSError as exc:
            raise DirectoryError(f"Error while writing {p} - {exc}") from exc

    # -------------------------------
    # Typed writers / readers
    # -------------------------------

    def write_step_info(self, info: StepMetadata) -> Path:
        p = self.path(STEP_INFO_NAME)
        self._publish(p, dump_yaml(info))
        return p

    def read_step_info(self) -> StepMetadata:
        return read_yaml_file(self.path(STEP_INFO_NAME), StepMetadata)

    def write_record(self, record: ProcessEnergyRecord) -> Path:
        """Publish a rank record; its appearance doubles as the completion signal."""

        p = self.record_path(record.proc_id)
        self._publish(p, dump_yaml(record))
        logger.info("Wrote energy record for process %d to %s", record.proc_id, p)
        return p

    def read_record(self, proc_id: int | str) -> ProcessEnergyRecord:
        return read_yaml_file(self.path(str(proc_id)), ProcessEnergyRecord)

    def write_totals(self, aggregate: GlobalAggregate) -> Path:
        p = self.path(TOTALS_NAME)
        self._publish(p, dump_yaml(aggregate))
        return p

    def read_totals(self) -> GlobalAggregate:
        return read_yaml_file(self.path(TOTALS_NAME), GlobalAggregate)
