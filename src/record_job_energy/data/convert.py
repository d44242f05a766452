"""Model/document conversion utilities using `cattrs` and `ruamel.yaml`.

Provides the shared converter used to turn domain models into plain nested
mappings and back, plus YAML text helpers for the on-disk step artifacts.
"""

from __future__ import annotations

import io
from datetime import datetime
from pathlib import Path
from typing import Any, Type, TypeVar

from cattrs import Converter
from ruamel.yaml import YAML  # type: ignore[import-untyped]

from record_job_energy.data.models import LaunchMode

T = TypeVar("T")

# Public converter instance; register hooks as needed.
converter = Converter()


def _structure_datetime(value: Any, _: type) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def register_datetime_hooks(conv: Converter) -> None:
    """Store datetimes as ISO-8601 strings so YAML read-back is canonical."""

    conv.register_unstructure_hook(datetime, lambda dt: dt.isoformat())
    conv.register_structure_hook(datetime, _structure_datetime)


register_datetime_hooks(converter)


def register_enum_hooks(conv: Converter) -> None:
    """Store :class:`LaunchMode` members as plain strings (safe YAML has no enum type)."""

    conv.register_unstructure_hook(LaunchMode, lambda m: m.value)
    conv.register_structure_hook(LaunchMode, lambda v, _: LaunchMode(v))


register_enum_hooks(converter)


def _yaml() -> YAML:
    yaml = YAML(typ="safe")
    yaml.default_flow_style = False
    return yaml


def dump_yaml(obj: Any) -> str:
    """Return the YAML text for an attrs model (or plain data)."""

    buf = io.StringIO()
    _yaml().dump(converter.unstructure(obj), buf)
    return buf.getvalue()


def load_yaml(text: str, cls: Type[T]) -> T:
    """Parse YAML text and structure it into ``cls``."""

    data = _yaml().load(text)
    return converter.structure(data, cls)


def read_yaml_file(path: Path | str, cls: Type[T]) -> T:
    """Read a YAML artifact from ``path`` into ``cls``."""

    return load_yaml(Path(path).read_text(encoding="utf-8"), cls)
