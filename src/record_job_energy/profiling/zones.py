"""Powercap zone discovery.

A zone is any directory below the powercap root that holds an energy counter
file (``energy_uj`` by default). Zone names are built from the optional
``name`` label files found between the zone and the root's direct child, with
that child's directory basename as the first component, e.g.::

    intel-rapl/intel-rapl:0/intel-rapl:0:0   ->  ("intel-rapl", "package-0", "core")

Functions
---------
scan_zones
    Return every zone below a root directory.
find_zone_name
    Derive the hierarchical name of a single zone directory.
"""

from __future__ import annotations

import logging
import os
from collections import defaultdict
from pathlib import Path

from record_job_energy.data.models import Zone
from record_job_energy.errors import ScanError

logger = logging.getLogger(__name__)


def read_first_line(path: Path | str) -> str:
    """Return the first line of ``path`` with surrounding whitespace removed."""

    with open(path, "r", encoding="utf-8") as f:
        return f.readline().strip()


def find_zone_name(zone_dir: Path | str, root: Path | str, *, label_file: str = "name") -> tuple[str, ...]:
    """Return the root-to-leaf name of the zone at ``zone_dir``.

    Parameters
    ----------
    zone_dir : Path or str
        Zone directory, located somewhere below ``root``.
    root : Path or str
        Topology root (e.g. ``/sys/devices/virtual/powercap``).
    label_file : str, default 'name'
        Per-directory label file; directories without one contribute nothing.

    Returns
    -------
    tuple of str
        Basename of the root's direct child, followed by the labels found on
        the way down to ``zone_dir``.
    """

    root_p = Path(root)
    cur = Path(zone_dir)
    if cur == root_p:
        return (root_p.name,)

    labels: list[str] = []
    while cur.parent != root_p:
        label_path = cur / label_file
        if label_path.is_file():
            try:
                labels.insert(0, read_first_line(label_path))
            except OSError as exc:
                raise ScanError(f"cannot read zone label {label_path}: {exc}") from exc
        if cur.parent == cur:
            raise ScanError(f"zone directory {zone_dir} is not below {root}")
        cur = cur.parent
    return (cur.name, *labels)


def _disambiguate(zones: list[Zone]) -> list[Zone]:
    """Append the directory basename to zones whose derived names collide."""

    by_name: dict[tuple[str, ...], list[Zone]] = defaultdict(list)
    for z in zones:
        by_name[z.name].append(z)

    out: list[Zone] = []
    for z in zones:
        if len(by_name[z.name]) > 1:
            leaf = Path(z.path).name
            if z.name[-1] != leaf:
                logger.debug("Zone name %s is shared; using %s as leaf for %s", z.display_name, leaf, z.path)
                z = Zone(path=z.path, name=(*z.name, leaf))
        out.append(z)
    return out


def scan_zones(root: Path | str, *, counter_file: str = "energy_uj", label_file: str = "name") -> list[Zone]:
    """Return every measurable zone below ``root``, sorted by path.

    Parameters
    ----------
    root : Path or str
        Topology root directory.
    counter_file : str, default 'energy_uj'
        File whose presence marks a directory as a zone.
    label_file : str, default 'name'
        Optional human-readable label file per directory.

    Returns
    -------
    list of Zone
        Possibly empty when the root holds no counters.

    Raises
    ------
    ScanError
        If ``root`` does not exist or is not a directory.
    """

    root_p = Path(root)
    if not root_p.is_dir():
        raise ScanError(f"powercap root {root_p} does not exist or is not a directory")

    zone_dirs: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root_p):
        dirnames.sort()
        if counter_file in filenames:
            zone_dirs.append(Path(dirpath))

    zones = [
        Zone(path=str(d), name=find_zone_name(d, root_p, label_file=label_file))
        for d in sorted(zone_dirs)
    ]
    zones = _disambiguate(zones)
    logger.info("Found %d powercap zones under %s", len(zones), root_p)
    return zones
