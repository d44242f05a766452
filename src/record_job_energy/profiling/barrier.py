"""Filesystem completion barrier for rank 0.

Each rank publishes its energy record under its own rank number in the step
directory; that file is also its completion signal. Rank 0 polls the directory
until one record per rank is visible or the timeout expires.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Callable

from record_job_energy.errors import BarrierTimeoutError
from record_job_energy.profiling.artifacts import StepArtifacts

logger = logging.getLogger(__name__)


class BarrierState(str, Enum):
    WAITING = "waiting"
    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"


class CompletionBarrier:
    """Wait until ``num_procs`` rank records exist in a step directory.

    Parameters
    ----------
    step_dir : Path or str
        Shared step directory.
    num_procs : int
        Expected number of rank records.
    timeout : float, default 600.0
        Seconds to wait before giving up.
    interval : float, default 1.0
        Seconds between directory polls.
    clock, sleep : callable, optional
        Time source and sleep function (``time.monotonic`` / ``time.sleep``).

    Attributes
    ----------
    m_state : BarrierState
        Current state; read through :attr:`state`.
    """

    def __init__(
        self,
        step_dir: Path | str,
        num_procs: int,
        *,
        timeout: float = 600.0,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.m_artifacts = StepArtifacts.from_step_dir(step_dir)
        self.m_num_procs = int(num_procs)
        self.m_timeout = float(timeout)
        self.m_interval = float(interval)
        self.m_clock = clock
        self.m_sleep = sleep
        self.m_state = BarrierState.WAITING

    @property
    def state(self) -> BarrierState:
        return self.m_state

    def count_finished(self) -> int:
        """Return how many distinct ranks below ``num_procs`` have published a record."""

        return sum(1 for n in self.m_artifacts.rank_names() if int(n) < self.m_num_procs)

    def wait(self) -> float:
        """Block until every rank has reported.

        Returns
        -------
        float
            Seconds spent waiting.

        Raises
        ------
        BarrierTimeoutError
            If the records are still incomplete after ``timeout`` seconds.
        """

        t0 = self.m_clock()
        last = -1
        while True:
            done = self.count_finished()
            if done == self.m_num_procs:
                self.m_state = BarrierState.SATISFIED
                elapsed = self.m_clock() - t0
                logger.info("All %d processes reported after %.1fs", done, elapsed)
                return elapsed
            if self.m_clock() - t0 > self.m_timeout:
                self.m_state = BarrierState.TIMED_OUT
                raise BarrierTimeoutError(
                    f"timeout waiting for processes to complete ({done}/{self.m_num_procs} "
                    f"reported within {self.m_timeout:g}s)"
                )
            if done != last:
                logger.info("Waiting for processes: %d/%d reported", done, self.m_num_procs)
                last = done
            self.m_sleep(self.m_interval)
