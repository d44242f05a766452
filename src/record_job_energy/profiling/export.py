"""Markdown export of step energy reports.

Functions
---------
node_rows
    Flatten a :class:`GlobalAggregate` into per-node table rows.
write_energy_summary
    Write a Markdown summary of a step report using mdutils.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from mdutils.mdutils import MdUtils  # type: ignore[import-untyped]

from record_job_energy.data.models import GlobalAggregate


def _fmt_time(value: Optional[datetime]) -> str:
    return value.isoformat(timespec="seconds") if value is not None else ""


def node_rows(aggregate: GlobalAggregate) -> list[list[str]]:
    """Return one row per node: name, cores, procs, cores used, start, finish, total J."""

    rows: list[list[str]] = []
    for name, node in aggregate.nodes.items():
        rows.append(
            [
                name,
                str(node.num_cores),
                str(node.num_procs),
                str(node.cores_used),
                _fmt_time(node.start_time),
                _fmt_time(node.finish_time),
                f"{node.node_total:.7f}",
            ]
        )
    return rows


def write_energy_summary(aggregate: GlobalAggregate, path: str) -> None:
    """Write a step energy summary as Markdown.

    Parameters
    ----------
    aggregate : GlobalAggregate
        The step report.
    path : str
        Destination file path. A ``.md`` suffix is stripped because mdutils
        appends it.
    """

    info = aggregate.step_info
    file_base = path[:-3] if path.endswith(".md") else path
    md = MdUtils(file_name=file_base)
    md.new_header(level=1, title=f"Job {info.job_id} step {info.step_id} energy")
    md.new_list(
        items=[
            f"Task: `{info.task}`",
            f"Launch: {info.parallel_cmd.value} ({info.num_procs} processes)",
            f"Total: {aggregate.total:.7f} {aggregate.units}",
        ]
    )

    rows = node_rows(aggregate)
    header = ["node", "cores", "procs", "cores_used", "start", "finish", f"total ({aggregate.units})"]
    table: list[str] = header.copy()
    for r in rows:
        table.extend(r)
    md.new_header(level=2, title="Nodes")
    md.new_table(columns=len(header), rows=len(rows) + 1, text=table, text_align="center")

    for name, node in aggregate.nodes.items():
        zone_table: list[str] = ["zone", f"energy ({aggregate.units})"]
        for zone_name, joules in node.zones.items():
            zone_table.extend([zone_name, f"{joules:.7f}"])
        md.new_header(level=2, title=f"Zones on {name}")
        if node.zones:
            md.new_table(columns=2, rows=len(node.zones) + 1, text=zone_table, text_align="left")
        else:
            md.new_paragraph("No powercap zones were recorded on this node.")
    md.create_md_file()
