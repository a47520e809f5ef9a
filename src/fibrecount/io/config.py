"""
Load *config.yml* into a validated :class:`Settings`.

YAML schema
~~~~~~~~~~~
default_constant: 50000        # used when no graticule calibration applies
draft_key: analysis_progress   # session key the draft is cached under
draft_dir: drafts              # folder of the YAML draft store
graticule_calibrations:
  - graticule_id: GR-01
    microscope: PCM-1          # matched case-insensitively
    date: 2026-01-15
    status: Pass               # "Pass" records are preferred
    constant_13mm: 15000
    constant_25mm: 50000

Every key is optional.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Sequence

import yaml

from ..calibration import DEFAULT_CONSTANT, GraticuleCalibration, MicroscopeConstants
from ..session import DEFAULT_DRAFT_KEY

__all__ = [
    "Settings",
    "ConfigError",
    "load_config",
    "dump_config",
]

CONFIG_NAME = "config.yml"


# ───────────────────────── exceptions ──────────────────────────
class ConfigError(Exception):
    """Invalid or inconsistent *config.yml*."""


# ───────────────────────── dataclass ───────────────────────────
@dataclass(slots=True, frozen=True)
class Settings:
    """
    Engine settings.

    Parameters
    ----------
    default_constant
        Microscope constant used when no calibration record applies.
    draft_key
        Key the in-progress draft is stored under.
    draft_dir
        Folder holding the YAML draft files.
    graticule_calibrations
        Calibration records consulted for the microscope constant.
    """

    default_constant: float = DEFAULT_CONSTANT
    draft_key: str = DEFAULT_DRAFT_KEY
    draft_dir: Path = Path("drafts")
    graticule_calibrations: Sequence[GraticuleCalibration] = field(
        default=(), repr=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "draft_dir", Path(self.draft_dir))
        object.__setattr__(
            self, "graticule_calibrations", tuple(self.graticule_calibrations)
        )

    def constants(self) -> MicroscopeConstants:
        return MicroscopeConstants(self.graticule_calibrations, self.default_constant)


# ───────────────────── helpers ─────────────────────────────────
def _number(value: Any, what: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{what} must be a number, got {value!r}") from exc


def _date(value: Any, what: str) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(str(value))
    except ValueError as exc:
        raise ConfigError(f"{what} must be an ISO date, got {value!r}") from exc


def _graticule(obj: Any) -> GraticuleCalibration:
    if not isinstance(obj, Mapping):
        raise ConfigError("Each item in 'graticule_calibrations' must be a mapping")
    for key in ("graticule_id", "microscope", "date"):
        if key not in obj:
            raise ConfigError(f"Graticule calibration needs a '{key}' field")

    gid = str(obj["graticule_id"])
    return GraticuleCalibration(
        graticule_id=gid,
        microscope=str(obj["microscope"]),
        date=_date(obj["date"], f"{gid} date"),
        status=str(obj.get("status", "Pass")),
        constant_13mm=_number(obj.get("constant_13mm"), f"{gid} constant_13mm"),
        constant_25mm=_number(obj.get("constant_25mm"), f"{gid} constant_25mm"),
    )


# ───────────────────── public loader ──────────────────────────────────
def load_config(path: Path | str) -> Settings:
    """
    Read *path* (a YAML file, or a folder containing ``config.yml``).

    Raises
    ------
    FileNotFoundError
        The file is missing.
    ConfigError
        Schema errors (bad numbers or dates, unknown keys, …).
    """
    cfg_path = Path(path)
    if cfg_path.is_dir():
        cfg_path = cfg_path / CONFIG_NAME
    if not cfg_path.exists():
        raise FileNotFoundError(cfg_path)

    try:
        data = yaml.safe_load(cfg_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"{cfg_path.name}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config must be a mapping")

    unknown = set(data) - {"default_constant", "draft_key", "draft_dir", "graticule_calibrations"}
    if unknown:
        raise ConfigError(f"Unknown config keys: {sorted(unknown)}")

    default = _number(data.get("default_constant"), "default_constant")
    if default is not None and default <= 0:
        raise ConfigError("default_constant must be positive")

    items = data.get("graticule_calibrations") or []
    if not isinstance(items, list):
        raise ConfigError("'graticule_calibrations' must be a list")
    grats: List[GraticuleCalibration] = [_graticule(obj) for obj in items]

    return Settings(
        default_constant=DEFAULT_CONSTANT if default is None else default,
        draft_key=str(data.get("draft_key") or DEFAULT_DRAFT_KEY),
        draft_dir=Path(str(data.get("draft_dir") or "drafts")),
        graticule_calibrations=grats,
    )


# ───────────────────── public dumper ──────────────────────────────────
def dump_config(settings: Settings, file: Path | str) -> None:
    """Write *settings* back in the schema accepted by :func:`load_config`."""
    doc = {
        "default_constant": settings.default_constant,
        "draft_key": settings.draft_key,
        "draft_dir": str(settings.draft_dir),
        "graticule_calibrations": [
            {
                "graticule_id": g.graticule_id,
                "microscope": g.microscope,
                "date": g.date.isoformat(),
                "status": g.status,
                "constant_13mm": g.constant_13mm,
                "constant_25mm": g.constant_25mm,
            }
            for g in settings.graticule_calibrations
        ],
    }
    Path(file).write_text(yaml.safe_dump(doc, sort_keys=False))
