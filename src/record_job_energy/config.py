"""Recorder configuration.

The configuration is an OmegaConf structured config built from
:class:`RecorderConfig`. Values are merged in order: structured defaults, an
optional YAML file (``--config`` or ``RECORD_JOB_ENERGY_CONFIG``), then the
command-line flags.

Examples
--------
>>> cfg = load_config(overrides={"timeout": 30})
>>> cfg.timeout
30.0
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from omegaconf import OmegaConf  # type: ignore[import-untyped]
from omegaconf.errors import OmegaConfBaseException  # type: ignore[import-untyped]

CONFIG_ENV_VAR = "RECORD_JOB_ENERGY_CONFIG"
DEFAULT_POWERCAP_ROOT = "/sys/devices/virtual/powercap"
DEFAULT_CANCEL_COMMAND = "scancel"


def default_out_directory() -> str:
    """Return the default output root, ``<cwd>/record-job-energy-data``."""

    return str(Path.cwd() / "record-job-energy-data")


class ConfigError(ValueError):
    """Raised when a configuration source holds invalid values."""


@dataclass(frozen=True)
class RecorderConfig:
    """Settings for one recorder run."""

    out_directory: str = ""
    timeout: float = 600.0
    poll_interval: float = 1.0
    powercap_root: str = DEFAULT_POWERCAP_ROOT
    counter_file: str = "energy_uj"
    label_file: str = "name"
    cancel_command: str = DEFAULT_CANCEL_COMMAND
    log_level: str = "INFO"
    write_summary: bool = True


def load_config(
    config_file: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> RecorderConfig:
    """Build a :class:`RecorderConfig` from defaults, a YAML file and overrides.

    Parameters
    ----------
    config_file : str or None, optional
        YAML file to merge over the defaults. When omitted, the path in
        ``RECORD_JOB_ENERGY_CONFIG`` (if set) is used.
    overrides : mapping, optional
        Final values (typically parsed from the command line). ``None``
        values are skipped.
    env : mapping, optional
        Environment used to look up the config file variable; defaults to
        ``os.environ``.

    Raises
    ------
    ConfigError
        If a source cannot be read or a value does not match its field type.
    """

    env = os.environ if env is None else env
    path = config_file or env.get(CONFIG_ENV_VAR)
    try:
        cfg = OmegaConf.structured(RecorderConfig)
        if path:
            cfg = OmegaConf.merge(cfg, OmegaConf.load(path))
        if overrides:
            cfg = OmegaConf.merge(cfg, {k: v for k, v in overrides.items() if v is not None})
        obj: RecorderConfig = OmegaConf.to_object(cfg)
    except (OSError, OmegaConfBaseException) as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc

    if not obj.out_directory:
        obj = replace(obj, out_directory=default_out_directory())
    if obj.timeout < 0 or obj.poll_interval <= 0:
        raise ConfigError("timeout must be >= 0 and poll_interval must be > 0")
    return obj
