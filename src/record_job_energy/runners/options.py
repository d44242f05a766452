"""Command-line options for the recorder.

The recorder sits between a parallel launcher and the measured task::

    srun [SRUN_OPTS] record-job-energy [OPTS] TASK [TASK_OPTS]

The first argument that does not start with ``-`` (or everything after a
literal ``--``) is the task. Options before it are matched against a fixed set
of flags; anything unrecognized is ignored.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Sequence, Union

from attrs import field, frozen

logger = logging.getLogger(__name__)

HELP_TEMPLATE = """\
RECORD-JOB-ENERGY HELP
  This program should be executed as:
      PARALLEL_CMD [PARALLEL_CMD_OPTS] record-job-energy [OPTS] PARALLEL_TASK [PARALLEL_TASK_OPTS]
    Where PARALLEL_CMD is srun or mpiexec.
  Options for this program include:
    [-d,--directory]=DIR
      Sets the desired output directory to DIR. Default is:
        {out_directory}
    [-t,--timeout]=TIMEOUT
      Sets the maximum time the root process will wait for the other processes to complete
      execution, after the root process has finished its execution. Value is in seconds,
      default value is {timeout:g}.
    [-i,--interval]=SECONDS
      Sets how often the root process checks for finished processes. Default is {interval:g}.
    [-c,--config]=FILE
      Reads settings from the YAML file FILE (see RecorderConfig for the keys).
    --help
      Display this message and exit
"""


class Flag(Enum):
    """Recognized flags as (short, long) spellings."""

    DIRECTORY = ("d", "directory")
    TIMEOUT = ("t", "timeout")
    INTERVAL = ("i", "interval")
    CONFIG = ("c", "config")
    HELP = ("", "help")

    @property
    def spellings(self) -> tuple[str, ...]:
        return tuple(s for s in self.value if s)


@frozen(kw_only=True)
class RunOptions:
    """Options parsed from the command line. ``None`` means not given."""

    directory: Optional[str] = None
    timeout: Optional[str] = None
    interval: Optional[str] = None
    config: Optional[str] = None
    help: bool = False
    task: tuple[str, ...] = field(factory=tuple, converter=tuple)
    ignored: tuple[str, ...] = field(factory=tuple, converter=tuple)

    def config_overrides(self) -> dict[str, Optional[str]]:
        """Return the values to merge over the recorder configuration."""

        return {"out_directory": self.directory, "timeout": self.timeout, "poll_interval": self.interval}


def split_argv(argv: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split ``argv`` into (option args, task args).

    Examples
    --------
    >>> split_argv(["-t=5", "hostname", "-f"])
    (['-t=5'], ['hostname', '-f'])
    >>> split_argv(["-d=/tmp/out", "--", "-weird-task"])
    (['-d=/tmp/out'], ['-weird-task'])
    """

    args = list(argv)
    for i, arg in enumerate(args):
        if arg == "--":
            return args[:i], args[i + 1 :]
        if not arg.startswith("-"):
            return args[:i], args[i:]
    return args, []


def _match(opt: str) -> tuple[Optional[Flag], Union[str, bool, None]]:
    """Return the flag ``opt`` spells and its value (``True`` when valueless)."""

    name, sep, value = opt.lstrip("-").partition("=")
    if not opt.startswith("-") or opt.startswith("---"):
        return None, None
    for flag in Flag:
        if name in flag.spellings:
            if sep:
                return flag, (value if value.strip() and not any(c.isspace() for c in value) else None)
            return flag, True
    return None, None


def parse_options(argv: Sequence[str]) -> RunOptions:
    """Parse the recorder command line.

    For each flag the first occurrence carrying a value wins; a valueless
    occurrence only counts when no valued one exists, in which case the
    default applies (except for ``--help``).
    """

    opts, task = split_argv(argv)
    values: dict[Flag, str] = {}
    seen: set[Flag] = set()
    ignored: list[str] = []
    for opt in opts:
        flag, value = _match(opt)
        if flag is None:
            ignored.append(opt)
            continue
        seen.add(flag)
        if isinstance(value, str) and flag not in values:
            values[flag] = value
    if ignored:
        logger.debug("Ignoring unrecognized options: %s", " ".join(ignored))
    return RunOptions(
        directory=values.get(Flag.DIRECTORY),
        timeout=values.get(Flag.TIMEOUT),
        interval=values.get(Flag.INTERVAL),
        config=values.get(Flag.CONFIG),
        help=Flag.HELP in seen,
        task=task,
        ignored=ignored,
    )


def help_text(*, out_directory: str, timeout: float, interval: float) -> str:
    return HELP_TEMPLATE.format(out_directory=out_directory, timeout=timeout, interval=interval)
